"""Tests for the upload pipeline and report views."""

import asyncio

import pytest

from conftest import USER, ScriptedGateway
from weekly_report.exceptions import PairingEmptyError, SessionNotFoundError, StudentNotFoundError
from weekly_report.models import IndividualAnalysis, OverallAnalysis
from weekly_report.services import ReportOrchestrationService
from weekly_report.services.file_pairing import UploadedFile
from weekly_report.services.report import LoadState


@pytest.fixture
def orchestrator(registry, gateway):
    return ReportOrchestrationService(registry, gateway)


def _upload(orchestrator, files, date_label=None):
    uploads = [UploadedFile(filename=name, content=content) for name, content in files]
    return asyncio.run(orchestrator.process_upload(USER, uploads, date_label))


class TestProcessUpload:
    def test_stores_paired_session_with_reference_text(
        self, orchestrator, registry, collection, kim_lee_csv, make_pdf
    ):
        summary = _upload(orchestrator, [
            ("AlgebraA 10월30일.pdf", make_pdf("Question 1", "Question 2")),
            ("AlgebraA_10월30일.csv", kim_lee_csv),
            ("ReferenceBook.pdf", make_pdf("Chapter 1 Coordinates")),
        ])

        assert [(s.class_name, s.date_label, s.student_count) for s in summary.stored] == [
            ("AlgebraA", "10월30일", 2)
        ]
        assert summary.unpaired == ["ReferenceBook.pdf"]
        assert summary.reference_file == "ReferenceBook.pdf"
        assert summary.errors == []

        session = registry.current(USER).get_session("AlgebraA", "10월30일")
        assert session.student_data.answer_rates == [50, 0]
        assert "Question 2" in session.exam_text
        assert "Chapter 1 Coordinates" in session.reference_text
        assert collection.writes == 1

    def test_nothing_pairs(self, orchestrator, registry, collection, make_pdf):
        with pytest.raises(PairingEmptyError):
            _upload(orchestrator, [("ReferenceBook.pdf", make_pdf())])

        assert registry.current(USER).classes == {}
        assert collection.writes == 0

    def test_bad_pair_does_not_stop_siblings(self, orchestrator, registry, kim_lee_csv, make_pdf):
        summary = _upload(orchestrator, [
            ("AlgebraA 10월30일.pdf", make_pdf()),
            ("AlgebraA 10월30일.csv", kim_lee_csv),
            ("GeometryB 10월30일.pdf", make_pdf()),
            ("GeometryB 10월30일.csv", b"student,1,2\nKim,O,X\n"),
        ])

        assert [s.class_name for s in summary.stored] == ["AlgebraA"]
        assert [e.class_name for e in summary.errors] == ["GeometryB"]
        assert "score" in summary.errors[0].error
        assert "GeometryB" not in registry.current(USER).classes

    def test_corrupt_workbook_does_not_stop_siblings(
        self, orchestrator, registry, kim_lee_csv, make_pdf, corrupt_xlsx
    ):
        broken = corrupt_xlsx([["student", "score", 1, 2], ["Kim", 90, "O", "X"]])
        summary = _upload(orchestrator, [
            ("AlgebraA 10월30일.pdf", make_pdf()),
            ("AlgebraA 10월30일.xlsx", broken),
            ("GeometryB 10월30일.pdf", make_pdf()),
            ("GeometryB 10월30일.csv", kim_lee_csv),
        ])

        assert [s.class_name for s in summary.stored] == ["GeometryB"]
        assert [e.class_name for e in summary.errors] == ["AlgebraA"]
        assert "AlgebraA 10월30일.xlsx" in summary.errors[0].error
        assert registry.current(USER).get_session("GeometryB", "10월30일") is not None

    def test_date_label_fallback(self, orchestrator, kim_lee_csv, make_pdf):
        summary = _upload(
            orchestrator,
            [("AlgebraA.pdf", make_pdf()), ("AlgebraA.csv", kim_lee_csv)],
            date_label="11월6일",
        )
        assert summary.stored[0].date_label == "11월6일"

    def test_explicit_date_wins_over_file_names(self, orchestrator, kim_lee_csv, make_pdf):
        summary = _upload(
            orchestrator,
            [("AlgebraA 10월30일.pdf", make_pdf()), ("AlgebraA 10월30일.csv", kim_lee_csv)],
            date_label="10월31일",
        )
        assert summary.stored[0].date_label == "10월31일"

    def test_missing_date_is_a_pair_error(self, orchestrator, kim_lee_csv, make_pdf):
        summary = _upload(orchestrator, [("AlgebraA.pdf", make_pdf()), ("AlgebraA.csv", kim_lee_csv)])
        assert summary.stored == []
        assert summary.errors[0].class_name == "AlgebraA"

    def test_reupload_keeps_ai_analysis(self, orchestrator, registry, make_session, seed, make_pdf):
        session = make_session(question_unit_map={1: "거리", 2: "내분점"})
        session.overall_analysis = OverallAnalysis(summary="s", common_weaknesses="w", recommendations="r")
        session.student_data.find_student("Kim").individual_analysis = IndividualAnalysis(
            strengths="s", weaknesses="w", recommendations="r"
        )
        seed(session)

        summary = _upload(orchestrator, [
            ("AlgebraA 10월30일.pdf", make_pdf()),
            ("AlgebraA 10월30일.csv", "student,score,1,2\nKim,100,O,O\nLee,70,X,X\n".encode()),
        ])

        assert summary.stored[0].replaced is True
        rebuilt = registry.current(USER).get_session("AlgebraA", "10월30일")
        kim = rebuilt.student_data.find_student("Kim")
        assert kim.score == 100
        assert kim.individual_analysis.strengths == "s"
        assert rebuilt.overall_analysis.summary == "s"
        assert rebuilt.question_unit_map == {1: "거리", 2: "내분점"}

    def test_save_failure_is_reported(self, orchestrator, registry, collection, kim_lee_csv, make_pdf):
        collection.fail_writes = True
        summary = _upload(orchestrator, [
            ("AlgebraA 10월30일.pdf", make_pdf()),
            ("AlgebraA 10월30일.csv", kim_lee_csv),
        ])
        assert summary.persist_error
        assert registry.current(USER).get_session("AlgebraA", "10월30일") is not None


class TestViewReport:
    def test_without_enrichment_everything_is_pending(self, orchestrator, gateway, make_session, seed):
        seed(make_session())

        view = asyncio.run(orchestrator.view_report(USER, "AlgebraA", "10월30일", enrich=False))

        assert view.enrichment is None
        assert view.report.summary.state == LoadState.PENDING
        assert gateway.generate.await_count == 0

    def test_class_view_enriches(self, orchestrator, make_session, seed):
        seed(make_session())

        view = asyncio.run(orchestrator.view_report(USER, "AlgebraA", "10월30일", page=2))

        assert view.report.summary.state == LoadState.READY
        assert view.navigation.page.name == "AI 분석"
        assert view.enrichment.ai_calls == 2

    def test_failed_ai_call_still_renders(self, registry, make_session, seed):
        gateway = ScriptedGateway()
        orchestrator = ReportOrchestrationService(registry, gateway)
        seed(make_session())

        view = asyncio.run(orchestrator.view_report(USER, "AlgebraA", "10월30일", student_name="Kim"))

        assert view.report.strengths.state == LoadState.FAILED
        assert view.report.errata[0].unit is None

    def test_unknown_lookups(self, orchestrator, make_session, seed):
        seed(make_session())
        with pytest.raises(SessionNotFoundError):
            asyncio.run(orchestrator.view_report(USER, "Nope", "10월30일", enrich=False))
        with pytest.raises(StudentNotFoundError):
            asyncio.run(orchestrator.view_report(USER, "AlgebraA", "10월30일", student_name="Nope", enrich=False))

    def test_trend_and_listing(self, orchestrator, make_session, seed):
        seed(make_session())

        assert [r.class_name for r in asyncio.run(orchestrator.list_reports(USER))] == ["AlgebraA"]
        points = asyncio.run(orchestrator.score_trend(USER, "AlgebraA", "Lee"))
        assert [p.student_score for p in points] == [70]
        with pytest.raises(StudentNotFoundError):
            asyncio.run(orchestrator.score_trend(USER, "AlgebraA", "Nope"))

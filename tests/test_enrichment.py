"""Tests for fetching missing AI artifacts."""

import asyncio

import pytest

from conftest import INDIVIDUAL_REPLY, OVERALL_REPLY, UNIT_MAP_REPLY, USER, ScriptedGateway
from weekly_report.exceptions import ResponseFormatError, SessionNotFoundError, StudentNotFoundError
from weekly_report.models import IndividualAnalysis, OverallAnalysis
from weekly_report.services.enrichment import (
    INDIVIDUAL,
    OVERALL,
    UNIT_MAP,
    EnrichmentService,
    coerce_unit_map,
    plan_enrichment,
)
from weekly_report.services.prompts import no_issues_overall, perfect_score_analysis

CLASS, DATE = "AlgebraA", "10월30일"


def _enrich(registry, gateway, student=None):
    return asyncio.run(EnrichmentService(registry, gateway).enrich(USER, CLASS, DATE, student))


def _live(registry):
    return registry.current(USER).get_session(CLASS, DATE)


class TestCoerceUnitMap:
    def test_mapping_form(self):
        assert coerce_unit_map({"2": "내분점", "1": "거리", "note": "x"}) == {1: "거리", 2: "내분점"}

    def test_list_form(self):
        data = {"question_units": [{"question_number": 1, "unit": "거리"}, {"qNum": "2", "unit": "내분점"}]}
        assert coerce_unit_map(data) == {1: "거리", 2: "내분점"}

    def test_empty_is_rejected(self):
        with pytest.raises(ResponseFormatError):
            coerce_unit_map({"summary": "nothing useful"})


class TestPlan:
    def test_only_absent_artifacts(self, make_session):
        session = make_session(question_unit_map={1: "거리"})
        kim = session.student_data.find_student("Kim")
        assert plan_enrichment(session) == [OVERALL]
        assert plan_enrichment(session, kim) == [OVERALL, INDIVIDUAL]

    def test_absent_student_needs_no_individual(self, make_session):
        session = make_session(rows=[
            {"student": "Kim", "score": 90, "1": "O", "2": "X"},
            {"student": "Lee", "score": "", "1": "", "2": ""},
        ])
        assert INDIVIDUAL not in plan_enrichment(session, session.student_data.find_student("Lee"))


class TestEnrich:
    def test_class_view_fetches_unit_map_and_overall(self, registry, gateway, collection, make_session, seed):
        seed(make_session())

        outcome = _enrich(registry, gateway)

        assert sorted(outcome.fetched) == sorted([UNIT_MAP, OVERALL])
        assert outcome.failed == {}
        assert outcome.ai_calls == 2
        live = _live(registry)
        assert live.question_unit_map == {1: "두 점 사이의 거리", 2: "선분의 내분점"}
        assert live.overall_analysis == OverallAnalysis.model_validate(OVERALL_REPLY)
        assert collection.writes == 1

    def test_nothing_missing_means_no_calls(self, registry, gateway, collection, make_session, seed):
        session = make_session(
            question_unit_map={1: "거리", 2: "내분점"},
            overall_analysis=OverallAnalysis.model_validate(OVERALL_REPLY),
        )
        for student in session.student_data.students:
            student.individual_analysis = IndividualAnalysis.model_validate(INDIVIDUAL_REPLY)
        seed(session)

        for _ in range(2):
            outcome = _enrich(registry, gateway, "Kim")
            assert outcome.requested == []
            assert outcome.changed is False

        assert gateway.generate.await_count == 0
        assert collection.writes == 0

    def test_second_pass_makes_no_calls(self, registry, gateway, make_session, seed):
        seed(make_session(question_unit_map={1: "거리", 2: "내분점"}))

        _enrich(registry, gateway, "Kim")
        calls = gateway.calls()
        outcome = _enrich(registry, gateway, "Kim")

        assert calls == 2
        assert gateway.calls() == calls
        assert outcome.requested == []

    def test_perfect_score_uses_canned_analysis(self, registry, gateway, make_session, seed):
        rows = [
            {"student": "Kim", "score": 90, "1": "O", "2": "X"},
            {"student": "Park", "score": 100, "1": "O", "2": "O"},
        ]
        seed(make_session(rows=rows, question_unit_map={1: "거리", 2: "내분점"}))

        outcome = _enrich(registry, gateway, "Park")

        assert INDIVIDUAL in outcome.fetched
        assert gateway.calls("individual") == 0
        park = _live(registry).student_data.find_student("Park")
        assert park.individual_analysis == perfect_score_analysis(100, 95)

    def test_no_low_rate_questions_uses_canned_overall(self, registry, gateway, make_session, seed):
        rows = [
            {"student": "Kim", "score": 100, "1": "O", "2": "O"},
            {"student": "Lee", "score": 50, "1": "O", "2": "X"},
        ]
        seed(make_session(rows=rows, question_unit_map={1: "거리", 2: "내분점"}))

        outcome = _enrich(registry, gateway)

        assert outcome.fetched == [OVERALL]
        assert gateway.calls("overall") == 0
        assert _live(registry).overall_analysis == no_issues_overall()

    def test_individual_waits_for_unit_map(self, registry, gateway, make_session, seed):
        seed(make_session())

        first = _enrich(registry, gateway, "Kim")

        assert INDIVIDUAL in first.failed
        assert UNIT_MAP in first.fetched
        assert gateway.calls("individual") == 0
        assert _live(registry).student_data.find_student("Kim").individual_analysis is None

        second = _enrich(registry, gateway, "Kim")

        assert second.requested == [INDIVIDUAL]
        assert second.fetched == [INDIVIDUAL]
        assert gateway.calls("unit_map") == 1
        kim = _live(registry).student_data.find_student("Kim")
        assert kim.individual_analysis == IndividualAnalysis.model_validate(INDIVIDUAL_REPLY)

    def test_failures_are_independent(self, registry, make_session, seed):
        gateway = ScriptedGateway(unit_map="this is not json", overall=OVERALL_REPLY)
        seed(make_session())

        outcome = _enrich(registry, gateway)

        assert list(outcome.failed) == [UNIT_MAP]
        assert outcome.fetched == [OVERALL]
        live = _live(registry)
        assert live.question_unit_map is None
        assert live.overall_analysis is not None

    def test_wrong_shape_is_a_failure(self, registry, make_session, seed):
        gateway = ScriptedGateway(unit_map=UNIT_MAP_REPLY, overall={"summary": "only this"})
        seed(make_session())

        outcome = _enrich(registry, gateway)

        assert OVERALL in outcome.failed
        assert _live(registry).overall_analysis is None

    def test_late_result_never_replaces_a_present_value(self, registry, make_session, seed):
        existing = OverallAnalysis(summary="first", common_weaknesses="w", recommendations="r")

        def concurrent_pass(kind):
            # another view stores its overall analysis while this fetch is in flight
            if kind == "overall":
                _live(registry).overall_analysis = existing

        gateway = ScriptedGateway(unit_map=UNIT_MAP_REPLY, overall=OVERALL_REPLY, on_call=concurrent_pass)
        seed(make_session())

        outcome = _enrich(registry, gateway)

        assert outcome.fetched == [UNIT_MAP]
        assert _live(registry).overall_analysis.summary == "first"
        assert _live(registry).question_unit_map is not None

    def test_save_failure_keeps_promoted_state(self, registry, gateway, collection, make_session, seed):
        collection.fail_writes = True
        seed(make_session())

        outcome = _enrich(registry, gateway)

        assert outcome.changed is True
        assert outcome.persist_error
        assert _live(registry).question_unit_map is not None
        assert collection.docs == {}

    def test_unknown_session(self, registry, gateway, make_session, seed):
        seed(make_session())
        with pytest.raises(SessionNotFoundError):
            asyncio.run(EnrichmentService(registry, gateway).enrich(USER, CLASS, "11월6일"))

    def test_unknown_student(self, registry, gateway, make_session, seed):
        seed(make_session())
        with pytest.raises(StudentNotFoundError):
            _enrich(registry, gateway, "Nobody")

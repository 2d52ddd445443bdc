"""
Test fixtures for the weekly report backend.

Provides an in-memory stand-in for the Mongo collection, a scripted AI
gateway and small builders for spreadsheets, PDFs and sessions. No test
talks to MongoDB or Gemini.
"""

import io
import json
import sys
import zipfile
from pathlib import Path
from unittest.mock import AsyncMock

import fitz
import pytest
from openpyxl import Workbook
from pymongo.errors import PyMongoError

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from weekly_report.cache import DatasetRegistry, DatasetStore  # noqa: E402
from weekly_report.exceptions import AIServiceError  # noqa: E402
from weekly_report.models import ClassSession, TestDataset  # noqa: E402
from weekly_report.services.statistics import build_class_statistics  # noqa: E402

USER = "teacher-1"

UNIT_MAP_REPLY = {"1": "두 점 사이의 거리", "2": "선분의 내분점"}

OVERALL_REPLY = {
    "summary": "중위권 학생들의 성취도가 고르게 나타났습니다.",
    "common_weaknesses": "내분점 공식 적용",
    "recommendations": "내분점 유형 복습",
    "question_analysis": [
        {
            "question_number": 2,
            "unit": "선분의 내분점",
            "analysis_point": "비율 순서 혼동",
            "solution": "공식을 그림과 함께 정리",
        }
    ],
}

INDIVIDUAL_REPLY = {
    "strengths": "반 평균보다 높은 점수를 받았습니다.",
    "weaknesses": "내분점 계산 실수",
    "recommendations": "내분점 문제 10개 풀이",
    "incorrect_analysis": [
        {
            "question_number": 2,
            "unit": "내분점 공식",
            "analysis_point": "m:n 순서 혼동",
            "solution": "공식 유도 과정을 다시 확인",
        }
    ],
}


# ── Fakes ─────────────────────────────────────────────────


class FakeCollection:
    """Enough of a motor collection for DatasetStore."""

    def __init__(self):
        self.docs = {}
        self.writes = 0
        self.fail_reads = False
        self.fail_writes = False

    async def find_one(self, query):
        if self.fail_reads:
            raise PyMongoError("read failed")
        doc = self.docs.get(query["user_id"])
        return dict(doc) if doc is not None else None

    async def replace_one(self, query, doc, upsert=False):
        if self.fail_writes:
            raise PyMongoError("write failed")
        self.writes += 1
        self.docs[query["user_id"]] = dict(doc)


class ScriptedGateway:
    """
    Replies to the three prompt kinds with canned JSON.

    A reply may be a dict (sent as JSON), a raw string, or an exception to
    raise. ``on_call`` runs before the reply is returned, which lets a test
    change the live dataset while a fetch is in flight.
    """

    def __init__(self, unit_map=None, overall=None, individual=None, on_call=None):
        self.replies = {"unit_map": unit_map, "overall": overall, "individual": individual}
        self.on_call = on_call
        self.prompts = []
        self.generate = AsyncMock(side_effect=self._reply)

    @staticmethod
    def kind_of(prompt):
        if "mapping each question number" in prompt:
            return "unit_map"
        if "Low-performing questions" in prompt:
            return "overall"
        return "individual"

    async def _reply(self, prompt):
        kind = self.kind_of(prompt)
        self.prompts.append((kind, prompt))
        if self.on_call is not None:
            self.on_call(kind)
        reply = self.replies[kind]
        if reply is None:
            raise AIServiceError(f"no scripted reply for {kind}")
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return reply
        return json.dumps(reply, ensure_ascii=False)

    def calls(self, kind=None):
        return sum(1 for k, _ in self.prompts if kind is None or k == kind)


# ── Fixtures ─────────────────────────────────────────────


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def store(collection):
    return DatasetStore({"test_datasets": collection}, "test_datasets")


@pytest.fixture
def registry(store):
    return DatasetRegistry(store)


@pytest.fixture
def gateway():
    return ScriptedGateway(unit_map=UNIT_MAP_REPLY, overall=OVERALL_REPLY, individual=INDIVIDUAL_REPLY)


@pytest.fixture
def kim_lee_rows():
    return [
        {"student": "Kim", "score": 90, "1": "O", "2": "X"},
        {"student": "Lee", "score": 70, "1": "X", "2": "X"},
    ]


@pytest.fixture
def make_session(kim_lee_rows):
    def _make(rows=None, **fields):
        stats = build_class_statistics(rows if rows is not None else kim_lee_rows)
        return ClassSession(exam_text="1. distance\n2. internal division\n", student_data=stats, **fields)
    return _make


@pytest.fixture
def seed(registry):
    """Put one session into the live dataset for USER."""
    def _seed(session, class_name="AlgebraA", date_label="10월30일"):
        dataset = TestDataset()
        dataset.set_session(class_name, date_label, session)
        registry.promote(USER, dataset)
        return dataset
    return _seed


@pytest.fixture
def make_pdf():
    def _make(*pages):
        doc = fitz.open()
        for text in pages or ("Weekly test",):
            page = doc.new_page()
            page.insert_text((72, 72), text)
        data = doc.tobytes()
        doc.close()
        return data
    return _make


@pytest.fixture
def make_xlsx():
    def _make(rows):
        workbook = Workbook()
        sheet = workbook.active
        for row in rows:
            sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()
    return _make


@pytest.fixture
def kim_lee_csv():
    return "student,score,1,2\nKim,90,O,X\nLee,70,X,X\n".encode("utf-8")


@pytest.fixture
def corrupt_xlsx(make_xlsx):
    """A workbook that opens but whose first sheet XML is cut short."""
    def _make(rows):
        source = zipfile.ZipFile(io.BytesIO(make_xlsx(rows)))
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as target:
            for item in source.infolist():
                data = source.read(item.filename)
                if item.filename == "xl/worksheets/sheet1.xml":
                    data = data[: len(data) // 2]
                target.writestr(item, data)
        return buffer.getvalue()
    return _make

"""
Report assembly - pure functions from session data to display models.

Nothing here renders markup or calls the AI service. Every AI-derived field
carries a LoadState so the presentation layer can show a spinner (pending),
a failure notice (failed), an empty-state message (empty) or the content.
"""

import re
from enum import Enum
from typing import Collection, Dict, List, Optional

from pydantic import BaseModel

from ..config.settings import settings
from ..models import (
    ClassSession,
    ClassStatistics,
    IndividualAnalysis,
    OverallAnalysis,
    StudentRecord,
    TestDataset,
)
from .enrichment import INDIVIDUAL, OVERALL

PENDING_MESSAGE = "AI 분석 대기 중..."
FAILED_MESSAGE = "AI 분석 내용을 생성하지 못했습니다."
NO_LOW_RATE_MESSAGE = "주요 오답 문항이 없습니다."
NO_INCORRECT_MESSAGE = "틀린 문항이 없습니다!"
NOT_SUBMITTED_MESSAGE = "해당 시험에 응시하지 않아 리포트를 생성할 수 없습니다."

EASY, MEDIUM, HARD, UNKNOWN = "쉬움", "보통", "어려움", "정보 없음"

_REPORT_FIRST_YEAR_HARD_FROM = 18
_REPORT_FIRST_YEAR_MEDIUM_FROM = 9
_REPORT_UPPER_YEAR_HARD = frozenset({14, 15, 17, 18, 19, 21})
_REPORT_UPPER_YEAR_MEDIUM = frozenset({6, 7, 8, 9, 10, 11, 12, 13, 16, 20})

_DATE_LABEL = re.compile(r"(\d{1,2})\s*월\s*(\d{1,2})\s*일")


class LoadState(str, Enum):
    PENDING = "pending"
    FAILED = "failed"
    EMPTY = "empty"
    READY = "ready"


# ============ DISPLAY MODELS ============
class TextBlock(BaseModel):
    state: LoadState
    text: Optional[str] = None
    message: Optional[str] = None


class LowRateQuestion(BaseModel):
    question_number: int
    answer_rate: int
    note_state: LoadState
    analysis_point: Optional[str] = None


class FeatureSummary(BaseModel):
    has_submissions: bool
    max_score: Optional[int] = None
    min_score: Optional[int] = None
    mean_score: int = 0
    perfect_questions: List[int] = []
    low_rate_questions: List[LowRateQuestion] = []


class InsightRow(BaseModel):
    question_number: int
    unit: Optional[str] = None
    difficulty: str
    analysis_point: str = ""
    solution: str = ""


class InsightTable(BaseModel):
    state: LoadState
    rows: List[InsightRow] = []
    message: Optional[str] = None


class ErrataRow(BaseModel):
    question_number: int
    unit: Optional[str] = None
    difficulty: str
    is_correct: bool
    class_answer_rate: Optional[int] = None


class ScoreBar(BaseModel):
    label: str
    score: int
    highlighted: bool = False


class ScoreDistribution(BaseModel):
    bars: List[ScoreBar] = []
    class_average: int = 0
    show_labels: bool = True


class ReportPage(BaseModel):
    number: int
    name: str
    sections: List[str]


class ClassReport(BaseModel):
    kind: str = "class"
    class_name: str
    date_label: str
    features: FeatureSummary
    score_distribution: ScoreDistribution
    summary: TextBlock
    common_weaknesses: TextBlock
    recommendations: TextBlock
    question_analysis: InsightTable
    pages: List[ReportPage]


class StudentReport(BaseModel):
    kind: str = "student"
    class_name: str
    date_label: str
    student_name: str
    submitted: bool
    message: Optional[str] = None
    score: Optional[int] = None
    features: Optional[FeatureSummary] = None
    score_distribution: Optional[ScoreDistribution] = None
    strengths: Optional[TextBlock] = None
    weaknesses: Optional[TextBlock] = None
    recommendations: Optional[TextBlock] = None
    errata: List[ErrataRow] = []
    incorrect_analysis: Optional[InsightTable] = None
    pages: List[ReportPage] = []


class PageView(BaseModel):
    page_number: int
    total_pages: int
    has_previous: bool
    has_next: bool
    page: Optional[ReportPage] = None


class TrendPoint(BaseModel):
    date_label: str
    student_score: Optional[int] = None
    class_average: int


class ReportSummary(BaseModel):
    class_name: str
    date_label: str
    student_count: int
    submitted_count: int
    class_average: int
    has_overall_analysis: bool


# ============ RULES ============

def report_difficulty(question_number: int, class_name: Optional[str]) -> str:
    """Difficulty label shown in report tables."""
    if not class_name:
        return UNKNOWN
    if "고1" in class_name:
        if question_number >= _REPORT_FIRST_YEAR_HARD_FROM:
            return HARD
        if question_number >= _REPORT_FIRST_YEAR_MEDIUM_FROM:
            return MEDIUM
        return EASY
    if question_number in _REPORT_UPPER_YEAR_HARD:
        return HARD
    if question_number in _REPORT_UPPER_YEAR_MEDIUM:
        return MEDIUM
    return EASY


def resolve_unit(
    question_number: int,
    unit_map: Optional[Dict[int, str]],
    individual: Optional[IndividualAnalysis] = None,
) -> Optional[str]:
    """Student's own label first, then the class unit map; None when unresolved."""
    if individual is not None:
        for item in individual.incorrect_analysis:
            if item.question_number == question_number and item.unit:
                return item.unit
    if unit_map:
        return unit_map.get(question_number) or None
    return None


def _artifact_state(value, failed: bool) -> LoadState:
    if value is not None:
        return LoadState.READY
    return LoadState.FAILED if failed else LoadState.PENDING


def _text_block(value: Optional[str], state: LoadState) -> TextBlock:
    if state == LoadState.READY:
        return TextBlock(state=state, text=(value or "").replace("\n", " "))
    if state == LoadState.FAILED:
        return TextBlock(state=state, message=FAILED_MESSAGE)
    return TextBlock(state=state, message=PENDING_MESSAGE)


def build_feature_summary(
    stats: ClassStatistics,
    overall: Optional[OverallAnalysis],
    overall_failed: bool = False,
) -> FeatureSummary:
    submitted = stats.submitted_students
    if not submitted:
        return FeatureSummary(has_submissions=False)

    scores = [s.score for s in submitted]
    state = _artifact_state(overall, overall_failed)
    points = {}
    if overall is not None:
        points = {item.question_number: item.analysis_point for item in overall.question_analysis}

    low_rate = []
    for number, rate in stats.numbered_rates():
        if rate > settings.LOW_RATE_THRESHOLD:
            continue
        if state == LoadState.READY:
            point = points.get(number)
            low_rate.append(LowRateQuestion(
                question_number=number,
                answer_rate=rate,
                note_state=LoadState.READY if point else LoadState.EMPTY,
                analysis_point=point or None,
            ))
        else:
            low_rate.append(LowRateQuestion(question_number=number, answer_rate=rate, note_state=state))

    return FeatureSummary(
        has_submissions=True,
        max_score=max(scores),
        min_score=min(scores),
        mean_score=stats.class_average,
        perfect_questions=[number for number, rate in stats.numbered_rates() if rate == 100],
        low_rate_questions=low_rate,
    )


def build_score_distribution(stats: ClassStatistics, current: Optional[str] = None) -> ScoreDistribution:
    """Submitted scores, highest first. In a student view classmates are anonymized."""
    ranked = sorted(stats.submitted_students, key=lambda s: s.score, reverse=True)
    bars = []
    for index, student in enumerate(ranked):
        is_current = current is not None and student.name == current
        if current is None or is_current:
            label = student.name
        else:
            label = f"학생 {index + 1}"
        bars.append(ScoreBar(label=label, score=student.score, highlighted=is_current))
    return ScoreDistribution(
        bars=bars,
        class_average=stats.class_average,
        show_labels=current is not None or len(ranked) <= 10,
    )


def _insight_rows(items, class_name, unit_map, individual=None) -> List[InsightRow]:
    return [
        InsightRow(
            question_number=item.question_number,
            unit=item.unit or resolve_unit(item.question_number, unit_map, individual),
            difficulty=report_difficulty(item.question_number, class_name),
            analysis_point=item.analysis_point,
            solution=item.solution,
        )
        for item in items
    ]


def build_class_report(
    class_name: str,
    date_label: str,
    session: ClassSession,
    failed: Collection[str] = (),
) -> ClassReport:
    stats = session.student_data
    overall = session.overall_analysis
    state = _artifact_state(overall, OVERALL in failed)

    if state == LoadState.READY and overall.question_analysis:
        table = InsightTable(
            state=LoadState.READY,
            rows=_insight_rows(overall.question_analysis, class_name, session.question_unit_map),
        )
    elif state == LoadState.READY:
        table = InsightTable(state=LoadState.EMPTY, message=NO_LOW_RATE_MESSAGE)
    else:
        table = InsightTable(state=state, message=FAILED_MESSAGE if state == LoadState.FAILED else PENDING_MESSAGE)

    return ClassReport(
        class_name=class_name,
        date_label=date_label,
        features=build_feature_summary(stats, overall, OVERALL in failed),
        score_distribution=build_score_distribution(stats),
        summary=_text_block(overall.summary if overall else None, state),
        common_weaknesses=_text_block(overall.common_weaknesses if overall else None, state),
        recommendations=_text_block(overall.recommendations if overall else None, state),
        question_analysis=table,
        pages=[
            ReportPage(number=1, name="종합 분석", sections=["features", "score_distribution"]),
            ReportPage(number=2, name="AI 분석", sections=["summary", "common_weaknesses", "recommendations"]),
            ReportPage(number=3, name="오답 문항 분석", sections=["question_analysis"]),
        ],
    )


def build_student_report(
    class_name: str,
    date_label: str,
    session: ClassSession,
    student: StudentRecord,
    failed: Collection[str] = (),
) -> StudentReport:
    if not student.submitted:
        return StudentReport(
            class_name=class_name,
            date_label=date_label,
            student_name=student.name,
            submitted=False,
            message=NOT_SUBMITTED_MESSAGE,
        )

    stats = session.student_data
    analysis = student.individual_analysis
    state = _artifact_state(analysis, INDIVIDUAL in failed)
    unit_map = session.question_unit_map

    errata = []
    for index, answer in enumerate(student.answers):
        errata.append(ErrataRow(
            question_number=answer.question_number,
            unit=resolve_unit(answer.question_number, unit_map, analysis),
            difficulty=report_difficulty(answer.question_number, class_name),
            is_correct=answer.is_correct,
            class_answer_rate=stats.answer_rates[index] if index < len(stats.answer_rates) else None,
        ))

    if state == LoadState.READY and analysis.incorrect_analysis:
        table = InsightTable(
            state=LoadState.READY,
            rows=_insight_rows(analysis.incorrect_analysis, class_name, unit_map, analysis),
        )
    elif state == LoadState.READY:
        table = InsightTable(state=LoadState.EMPTY, message=NO_INCORRECT_MESSAGE)
    else:
        table = InsightTable(state=state, message=FAILED_MESSAGE if state == LoadState.FAILED else PENDING_MESSAGE)

    return StudentReport(
        class_name=class_name,
        date_label=date_label,
        student_name=student.name,
        submitted=True,
        score=student.score,
        features=build_feature_summary(stats, session.overall_analysis, OVERALL in failed),
        score_distribution=build_score_distribution(stats, current=student.name),
        strengths=_text_block(analysis.strengths if analysis else None, state),
        weaknesses=_text_block(analysis.weaknesses if analysis else None, state),
        recommendations=_text_block(analysis.recommendations if analysis else None, state),
        errata=errata,
        incorrect_analysis=table,
        pages=[
            ReportPage(number=1, name="종합 분석", sections=["features", "score_distribution"]),
            ReportPage(number=2, name="AI 분석", sections=["strengths", "weaknesses", "recommendations"]),
            ReportPage(number=3, name="문항 정오표", sections=["errata"]),
            ReportPage(number=4, name="오답 분석", sections=["incorrect_analysis"]),
        ],
    )


def paginate(pages: List[ReportPage], page_number: int) -> PageView:
    """Clamp ``page_number`` into range and describe the navigation around it."""
    total = len(pages)
    if total == 0:
        return PageView(page_number=0, total_pages=0, has_previous=False, has_next=False)
    current = min(max(page_number, 1), total)
    return PageView(
        page_number=current,
        total_pages=total,
        has_previous=current > 1,
        has_next=current < total,
        page=pages[current - 1],
    )


# ============ ACROSS SESSIONS ============

def date_sort_key(date_label: str):
    match = _DATE_LABEL.search(date_label)
    if match:
        return (0, int(match.group(1)), int(match.group(2)), date_label)
    return (1, 0, 0, date_label)


def build_score_trend(dataset: TestDataset, class_name: str, student_name: str) -> List[TrendPoint]:
    """The student's score against the class average for every date of a class."""
    points = []
    sessions = dataset.classes.get(class_name, {})
    for date_label in sorted(sessions, key=date_sort_key):
        stats = sessions[date_label].student_data
        student = stats.find_student(student_name)
        points.append(TrendPoint(
            date_label=date_label,
            student_score=student.score if student is not None and student.submitted else None,
            class_average=stats.class_average,
        ))
    return points


def list_report_summaries(dataset: TestDataset) -> List[ReportSummary]:
    summaries = []
    for class_name in sorted(dataset.classes):
        sessions = dataset.classes[class_name]
        for date_label in sorted(sessions, key=date_sort_key):
            stats = sessions[date_label].student_data
            summaries.append(ReportSummary(
                class_name=class_name,
                date_label=date_label,
                student_count=len(stats.students),
                submitted_count=len(stats.submitted_students),
                class_average=stats.class_average,
                has_overall_analysis=sessions[date_label].overall_analysis is not None,
            ))
    return summaries

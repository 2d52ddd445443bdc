"""
Student statistics aggregation.

Turns raw spreadsheet rows into ClassStatistics: one StudentRecord per row
(in row order), class average over submitted students and per-question
answer rates. Aggregate rows already present in the sheet are skipped; the
numbers are always recomputed from the student rows.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..config.settings import settings
from ..exceptions import MissingColumnError, ParseError
from ..models import AnswerMark, ClassSession, ClassStatistics, StudentRecord
from ..utils import percentage, round_half_up

logger = logging.getLogger(__name__)

QUESTION_HEADER = re.compile(r"^\d+$")


@dataclass(frozen=True)
class MarkAlphabet:
    """Cell values meaning correct / incorrect; anything else is unanswered."""
    correct: Sequence[str] = ("O",)
    incorrect: Sequence[str] = ("X",)

    def classify(self, cell: Any) -> Optional[bool]:
        """True / False for a recognized mark, None otherwise."""
        if cell is None:
            return None
        mark = str(cell).strip().upper()
        if mark in self.correct:
            return True
        if mark in self.incorrect:
            return False
        return None


@dataclass
class SheetDialect:
    name_keywords: List[str] = field(default_factory=lambda: list(settings.NAME_HEADER_KEYWORDS))
    score_keywords: List[str] = field(default_factory=lambda: list(settings.SCORE_HEADER_KEYWORDS))
    aggregate_markers: List[str] = field(default_factory=lambda: list(settings.AGGREGATE_ROW_MARKERS))
    marks: MarkAlphabet = field(
        default_factory=lambda: MarkAlphabet(
            correct=tuple(m.upper() for m in settings.CORRECT_MARKS),
            incorrect=tuple(m.upper() for m in settings.INCORRECT_MARKS),
        )
    )


def find_header(headers: Iterable[str], keywords: Iterable[str]) -> Optional[str]:
    """Exact (case-insensitive) keyword match first, then substring match."""
    headers = list(headers)
    lowered = [k.lower() for k in keywords]

    for header in headers:
        if header.strip().lower() in lowered:
            return header

    for header in headers:
        h = header.strip().lower()
        if any(k in h for k in lowered):
            return header

    return None


def question_headers(headers: Iterable[str]) -> List[str]:
    """Headers that are entirely an integer, ordered by question number."""
    numeric = [h for h in headers if QUESTION_HEADER.match(h.strip())]
    return sorted(numeric, key=lambda h: int(h.strip()))


def _parse_score(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return round_half_up(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return round_half_up(float(text))
    except ValueError:
        return None


def _collect_headers(rows: List[Dict[str, Any]]) -> List[str]:
    headers: List[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)
    return headers


def build_class_statistics(
    rows: List[Dict[str, Any]],
    dialect: Optional[SheetDialect] = None,
    source_name: str = "spreadsheet",
) -> ClassStatistics:
    """
    Aggregate raw rows into ClassStatistics.

    Raises MissingColumnError when the name, score or question columns are
    missing and ParseError for a submitted row without a readable score or a
    repeated student name. Nothing is returned on failure.
    """
    dialect = dialect or SheetDialect()
    rows = [{str(key).strip(): value for key, value in row.items()} for row in rows]
    headers = _collect_headers(rows)

    name_header = find_header(headers, dialect.name_keywords)
    if name_header is None:
        raise MissingColumnError("student name", headers)
    score_header = find_header(headers, dialect.score_keywords)
    if score_header is None:
        raise MissingColumnError("score", headers)

    q_headers = question_headers(headers)
    if not q_headers:
        raise MissingColumnError("question numbers", headers)
    question_count = len(q_headers)
    markers = {m.strip().lower() for m in dialect.aggregate_markers}

    students: List[StudentRecord] = []
    seen_names = set()
    for row in rows:
        raw_name = row.get(name_header)
        name = "" if raw_name is None else str(raw_name).strip()
        if not name or name.lower() in markers:
            continue
        if name in seen_names:
            raise ParseError(source_name, f"student '{name}' appears more than once")
        seen_names.add(name)

        submitted = False
        answers = []
        for header in q_headers:
            verdict = dialect.marks.classify(row.get(header))
            if verdict is not None:
                submitted = True
            answers.append(AnswerMark(question_number=int(header.strip()), is_correct=bool(verdict)))

        score = None
        if submitted:
            score = _parse_score(row.get(score_header))
            if score is None:
                raise ParseError(
                    source_name, f"student '{name}' has marks but no readable score ({row.get(score_header)!r})"
                )

        students.append(StudentRecord(name=name, submitted=submitted, score=score, answers=answers))

    submitted_students = [s for s in students if s.submitted]
    submitted_count = len(submitted_students)

    if submitted_count:
        class_average = round_half_up(sum(s.score for s in submitted_students) / submitted_count)
    else:
        class_average = 0

    answer_rates = []
    for index in range(question_count):
        correct = sum(1 for s in submitted_students if s.answers[index].is_correct)
        answer_rates.append(percentage(correct, submitted_count))

    logger.info(
        f"{source_name}: {len(students)} students ({submitted_count} submitted), "
        f"{question_count} questions, average {class_average}"
    )
    return ClassStatistics(
        students=students,
        class_average=class_average,
        answer_rates=answer_rates,
        question_count=question_count,
        question_numbers=[int(h.strip()) for h in q_headers],
    )


def merge_session(previous: Optional[ClassSession], rebuilt: ClassSession) -> ClassSession:
    """
    Carry cached AI artifacts from ``previous`` into a freshly rebuilt session.

    Overall analysis and unit map move over as-is; individual analyses move
    to the new record with the same student name. Students missing from the
    new sheet drop out together with their analysis.
    """
    if previous is None:
        return rebuilt

    merged = rebuilt.model_copy(deep=True)
    if merged.overall_analysis is None:
        merged.overall_analysis = previous.overall_analysis
    if merged.question_unit_map is None:
        merged.question_unit_map = previous.question_unit_map
    if merged.reference_text is None:
        merged.reference_text = previous.reference_text

    cached = {
        s.name: s.individual_analysis
        for s in previous.student_data.students
        if s.individual_analysis is not None
    }
    carried = 0
    for student in merged.student_data.students:
        if student.individual_analysis is None and student.name in cached:
            student.individual_analysis = cached[student.name]
            carried += 1

    if carried:
        logger.info(f"Carried {carried} individual analyses into the rebuilt session")
    return merged

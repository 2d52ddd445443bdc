"""
AI enrichment - fetch only the AI artifacts a report view is missing.

Three artifacts hang off a class session: the question -> concept unit map,
the class-wide overall analysis, and one individual analysis per student.
Each is fetched at most once; presence is the only cache key. The fetches
for one view run concurrently and fail independently. Successful results
are merged into a copy of the live dataset with a presence check per
artifact, so a late response never replaces a value that is already there.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ValidationError

from ..cache import DatasetRegistry
from ..exceptions import (
    MissingDependencyError,
    PersistenceError,
    ResponseFormatError,
    SessionNotFoundError,
    StudentNotFoundError,
)
from ..models import ClassSession, IndividualAnalysis, OverallAnalysis, StudentRecord
from ..utils import clone_dataset
from .ai_gateway import parse_ai_json
from .prompts import (
    build_individual_prompt,
    build_overall_prompt,
    build_unit_map_prompt,
    low_rate_questions,
    no_issues_overall,
    perfect_score_analysis,
)

logger = logging.getLogger(__name__)

UNIT_MAP = "question_unit_map"
OVERALL = "overall_analysis"
INDIVIDUAL = "individual_analysis"


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


class EnrichmentOutcome(BaseModel):
    """What one enrichment pass did."""
    requested: List[str] = []
    fetched: List[str] = []
    failed: Dict[str, str] = {}
    ai_calls: int = 0
    changed: bool = False
    persist_error: Optional[str] = None


def plan_enrichment(session: ClassSession, student: Optional[StudentRecord] = None) -> List[str]:
    """Artifacts that are absent and therefore need fetching for this view."""
    needed = []
    if session.question_unit_map is None:
        needed.append(UNIT_MAP)
    if session.overall_analysis is None:
        needed.append(OVERALL)
    if student is not None and student.submitted and student.individual_analysis is None:
        needed.append(INDIVIDUAL)
    return needed


def coerce_unit_map(data: Dict[str, Any]) -> Dict[int, str]:
    """
    Read a unit map reply: {"1": "label", ...} or
    {"question_units": [{"question_number": 1, "unit": "label"}, ...]}.
    Missing questions are allowed; an empty result is not.
    """
    unit_map: Dict[int, str] = {}

    entries = data.get("question_units")
    if isinstance(entries, list):
        for item in entries:
            if not isinstance(item, dict):
                continue
            number = item.get("question_number", item.get("qNum"))
            unit = item.get("unit")
            if str(number).strip().isdigit() and isinstance(unit, str) and unit.strip():
                unit_map[int(str(number).strip())] = unit.strip()
    else:
        for key, value in data.items():
            if str(key).strip().isdigit() and isinstance(value, str) and value.strip():
                unit_map[int(str(key).strip())] = value.strip()

    if not unit_map:
        raise ResponseFormatError("Unit map response contains no question labels")
    return dict(sorted(unit_map.items()))


class EnrichmentService:
    """Fills in missing AI artifacts for one (class, date) and optional student."""

    def __init__(self, registry: DatasetRegistry, gateway: TextGenerator):
        self.registry = registry
        self.gateway = gateway

    async def enrich(
        self,
        user_id: str,
        class_name: str,
        date_label: str,
        student_name: Optional[str] = None,
    ) -> EnrichmentOutcome:
        dataset = await self.registry.get(user_id)
        live_session = dataset.get_session(class_name, date_label)
        if live_session is None:
            raise SessionNotFoundError(f"No report for {class_name} {date_label}")

        student = None
        if student_name is not None:
            student = live_session.student_data.find_student(student_name)
            if student is None:
                raise StudentNotFoundError(f"Student '{student_name}' is not in {class_name} {date_label}")

        needed = plan_enrichment(live_session, student)
        outcome = EnrichmentOutcome(requested=needed)
        if not needed:
            return outcome

        # inputs for this pass stay fixed even if the live dataset moves on
        session = live_session.model_copy(deep=True)
        student = session.student_data.find_student(student_name) if student_name is not None else None

        fetchers = {
            UNIT_MAP: lambda: self._fetch_unit_map(session, outcome),
            OVERALL: lambda: self._fetch_overall(session, outcome),
            INDIVIDUAL: lambda: self._fetch_individual(user_id, class_name, date_label, session, student, outcome),
        }
        logger.info(f"Enriching {class_name} {date_label} ({student_name or 'class'}): {', '.join(needed)}")
        results = await asyncio.gather(*(fetchers[name]() for name in needed), return_exceptions=True)

        fetched: Dict[str, Any] = {}
        for name, result in zip(needed, results):
            if isinstance(result, Exception):
                logger.warning(f"{name} for {class_name} {date_label} failed: {result}")
                outcome.failed[name] = str(result)
            else:
                fetched[name] = result

        if not fetched:
            return outcome

        # merge onto the live dataset as it is now, not as it was before the awaits
        working = clone_dataset(self.registry.current(user_id))
        target = working.get_session(class_name, date_label)
        if target is None:
            logger.warning(f"{class_name} {date_label} disappeared during enrichment, discarding results")
            return outcome

        for name, value in fetched.items():
            if self._merge(target, name, value, student_name):
                outcome.fetched.append(name)

        if not outcome.fetched:
            return outcome

        outcome.changed = True
        self.registry.promote(user_id, working)
        try:
            await self.registry.persist(user_id)
        except PersistenceError as e:
            outcome.persist_error = str(e)
        return outcome

    # ============ FETCHERS ============

    async def _fetch_unit_map(self, session: ClassSession, outcome: EnrichmentOutcome) -> Dict[int, str]:
        outcome.ai_calls += 1
        raw = await self.gateway.generate(build_unit_map_prompt(session))
        unit_map = coerce_unit_map(parse_ai_json(raw))
        expected = session.student_data.question_count
        if len(unit_map) < expected:
            logger.info(f"Unit map covers {len(unit_map)}/{expected} questions")
        return unit_map

    async def _fetch_overall(self, session: ClassSession, outcome: EnrichmentOutcome) -> OverallAnalysis:
        low_rate = low_rate_questions(session.student_data)
        if not low_rate:
            return no_issues_overall()

        outcome.ai_calls += 1
        raw = await self.gateway.generate(build_overall_prompt(session, low_rate))
        try:
            return OverallAnalysis.model_validate(parse_ai_json(raw))
        except ValidationError as e:
            raise ResponseFormatError(f"Overall analysis has the wrong shape: {e}")

    async def _fetch_individual(
        self,
        user_id: str,
        class_name: str,
        date_label: str,
        session: ClassSession,
        student: StudentRecord,
        outcome: EnrichmentOutcome,
    ) -> IndividualAnalysis:
        if not student.incorrect_questions:
            return perfect_score_analysis(student.score, session.student_data.class_average)

        # the unit map may be fetched in this same pass; only an existing one counts
        live = self.registry.current(user_id).get_session(class_name, date_label)
        unit_map = live.question_unit_map if live is not None else None
        if unit_map is None:
            raise MissingDependencyError(
                f"Unit map for {class_name} {date_label} is required before analysing {student.name}"
            )

        outcome.ai_calls += 1
        raw = await self.gateway.generate(build_individual_prompt(student, session, class_name, unit_map))
        try:
            return IndividualAnalysis.model_validate(parse_ai_json(raw))
        except ValidationError as e:
            raise ResponseFormatError(f"Individual analysis has the wrong shape: {e}")

    # ============ MERGE ============

    @staticmethod
    def _merge(target: ClassSession, name: str, value: Any, student_name: Optional[str]) -> bool:
        """Set one artifact if it is still absent. Returns whether anything changed."""
        if name == UNIT_MAP:
            if target.question_unit_map is not None:
                return False
            target.question_unit_map = value
            return True

        if name == OVERALL:
            if target.overall_analysis is not None:
                return False
            target.overall_analysis = value
            return True

        if name == INDIVIDUAL and student_name is not None:
            record = target.student_data.find_student(student_name)
            if record is None or record.individual_analysis is not None:
                return False
            record.individual_analysis = value
            return True

        return False

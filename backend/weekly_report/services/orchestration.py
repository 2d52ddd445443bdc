"""
Orchestration service - coordinates upload and report viewing.

FLOW:
1. Upload batch -> pair files by class name -> for each pair:
   a. Parse the spreadsheet and aggregate statistics
   b. Extract the exam PDF text
   c. Merge with any existing session for the same (class, date)
   Every pair that succeeds is stored with one promote + save.
2. Report view -> enrich the missing AI artifacts (optional) -> assemble the
   class or student report -> pick the requested page.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Union

from pydantic import BaseModel

from ..cache import DatasetRegistry
from ..exceptions import (
    PairingEmptyError,
    ParseError,
    PersistenceError,
    ReportError,
    SessionNotFoundError,
    StudentNotFoundError,
)
from ..models import ClassSession
from .document_extraction import DocumentExtractionService
from .enrichment import EnrichmentOutcome, EnrichmentService, TextGenerator
from .file_pairing import FilePair, UploadedFile, pair_files
from .report import (
    ClassReport,
    PageView,
    ReportSummary,
    StudentReport,
    TrendPoint,
    build_class_report,
    build_score_trend,
    build_student_report,
    list_report_summaries,
    paginate,
)
from .statistics import build_class_statistics, merge_session

logger = logging.getLogger(__name__)


class StoredSession(BaseModel):
    class_name: str
    date_label: str
    student_count: int
    submitted_count: int
    class_average: int
    replaced: bool = False


class PairError(BaseModel):
    class_name: str
    files: List[str] = []
    error: str


class UploadSummary(BaseModel):
    stored: List[StoredSession] = []
    errors: List[PairError] = []
    unpaired: List[str] = []
    reference_file: Optional[str] = None
    persist_error: Optional[str] = None


class ReportView(BaseModel):
    report: Union[ClassReport, StudentReport]
    navigation: PageView
    enrichment: Optional[EnrichmentOutcome] = None


class ReportOrchestrationService:
    """Orchestrates the upload -> aggregate -> enrich -> assemble workflow."""

    def __init__(
        self,
        registry: DatasetRegistry,
        gateway: TextGenerator,
        extractor: Optional[DocumentExtractionService] = None,
    ):
        self.registry = registry
        self.extractor = extractor or DocumentExtractionService()
        self.enricher = EnrichmentService(registry, gateway)

    # ============ PHASE 1: UPLOAD ============

    async def process_upload(
        self,
        user_id: str,
        files: List[UploadedFile],
        date_label: Optional[str] = None,
    ) -> UploadSummary:
        """
        Store every (class, date) session that can be built from ``files``.

        Raises PairingEmptyError when no pdf/spreadsheet pair exists; in that
        case nothing is parsed and the dataset is untouched. A pair that fails
        to parse is reported in ``errors`` and does not stop its siblings.
        """
        pairing = pair_files(files)
        if not pairing.pairs:
            raise PairingEmptyError(
                "No class could be matched: upload an exam PDF and a result sheet "
                "(CSV/XLSX) whose names share the class name"
            )

        summary = UploadSummary(unpaired=[f.filename for f in pairing.unpaired])

        reference_text = None
        candidates = pairing.reference_candidates
        if candidates:
            reference = candidates[0]
            try:
                reference_text = await self.extractor.read_pdf_text(reference.filename, reference.content)
                summary.reference_file = reference.filename
            except ReportError as e:
                logger.warning(f"Reference text from '{reference.filename}' skipped: {e}")

        keys = list(pairing.pairs)
        results = await asyncio.gather(
            *(self._build_session(pairing.pairs[key], key, date_label) for key in keys),
            return_exceptions=True,
        )

        built: Dict[tuple, ClassSession] = {}
        for key, result in zip(keys, results):
            pair = pairing.pairs[key]
            if isinstance(result, ReportError):
                logger.warning(f"Skipping {key}: {result}")
                summary.errors.append(PairError(
                    class_name=key,
                    files=[pair.pdf.filename, pair.spreadsheet.filename],
                    error=str(result),
                ))
                continue
            if isinstance(result, BaseException):
                raise result
            session_date, session = result
            if reference_text is not None:
                session.reference_text = reference_text
            built[(key, session_date)] = session

        if not built:
            return summary

        working = await self.registry.snapshot(user_id)
        for (class_name, session_date), session in built.items():
            previous = working.get_session(class_name, session_date)
            working.set_session(class_name, session_date, merge_session(previous, session))
            stats = session.student_data
            summary.stored.append(StoredSession(
                class_name=class_name,
                date_label=session_date,
                student_count=len(stats.students),
                submitted_count=len(stats.submitted_students),
                class_average=stats.class_average,
                replaced=previous is not None,
            ))
            logger.info(f"Stored {class_name} {session_date} ({len(stats.students)} students)")

        self.registry.promote(user_id, working)
        try:
            await self.registry.persist(user_id)
        except PersistenceError as e:
            summary.persist_error = str(e)
        return summary

    async def _build_session(self, pair: FilePair, class_name: str, date_label: Optional[str]):
        session_date = date_label or pair.date_label
        if not session_date:
            raise ParseError(
                pair.spreadsheet.filename,
                "no exam date: put it in the file names (e.g. 10월30일) or pass date_label",
            )

        rows, exam_text = await asyncio.gather(
            self.extractor.read_spreadsheet(pair.spreadsheet.filename, pair.spreadsheet.content),
            self.extractor.read_pdf_text(pair.pdf.filename, pair.pdf.content),
        )
        stats = build_class_statistics(rows, source_name=pair.spreadsheet.filename)
        return session_date, ClassSession(exam_text=exam_text, student_data=stats)

    # ============ PHASE 2: REPORT VIEW ============

    async def view_report(
        self,
        user_id: str,
        class_name: str,
        date_label: str,
        student_name: Optional[str] = None,
        page: int = 1,
        enrich: bool = True,
    ) -> ReportView:
        outcome = None
        if enrich:
            outcome = await self.enricher.enrich(user_id, class_name, date_label, student_name)

        dataset = await self.registry.get(user_id)
        session = dataset.get_session(class_name, date_label)
        if session is None:
            raise SessionNotFoundError(f"No report for {class_name} {date_label}")
        failed = set(outcome.failed) if outcome else set()

        if student_name is None:
            report = build_class_report(class_name, date_label, session, failed)
        else:
            student = session.student_data.find_student(student_name)
            if student is None:
                raise StudentNotFoundError(f"Student '{student_name}' is not in {class_name} {date_label}")
            report = build_student_report(class_name, date_label, session, student, failed)

        return ReportView(report=report, navigation=paginate(report.pages, page), enrichment=outcome)

    async def list_reports(self, user_id: str) -> List[ReportSummary]:
        return list_report_summaries(await self.registry.get(user_id))

    async def score_trend(self, user_id: str, class_name: str, student_name: str) -> List[TrendPoint]:
        dataset = await self.registry.get(user_id)
        sessions = dataset.classes.get(class_name)
        if not sessions:
            raise SessionNotFoundError(f"No reports for {class_name}")
        if all(s.student_data.find_student(student_name) is None for s in sessions.values()):
            raise StudentNotFoundError(f"Student '{student_name}' has no results in {class_name}")
        return build_score_trend(dataset, class_name, student_name)

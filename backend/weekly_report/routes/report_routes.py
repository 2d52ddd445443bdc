"""
Weekly test report routes.

Endpoints:
- POST /api/reports/upload
- GET /api/reports
- GET /api/reports/{class_name}/{date_label}
- GET /api/reports/{class_name}/{date_label}/students/{student_name}
- GET /api/reports/{class_name}/students/{student_name}/trend
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Request, UploadFile

from ..config.settings import settings
from ..exceptions import (
    AIServiceError,
    MissingColumnError,
    PairingEmptyError,
    ParseError,
    PersistenceError,
    ReportError,
    SessionNotFoundError,
    StudentNotFoundError,
)
from ..services import ReportOrchestrationService
from ..services.file_pairing import UploadedFile
from ..utils import validate_file_size, validate_file_type

DEFAULT_USER = "local"


def get_orchestrator(request: Request) -> ReportOrchestrationService:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return orchestrator


def _http_error(e: ReportError) -> HTTPException:
    if isinstance(e, (SessionNotFoundError, StudentNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (PairingEmptyError, ParseError, MissingColumnError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, (PersistenceError, AIServiceError)):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def create_report_routes() -> APIRouter:
    """Create report routes; the orchestrator comes from app.state."""

    router = APIRouter(prefix="/api/reports", tags=["reports"])

    @router.post("/upload")
    async def upload_results(
        files: List[UploadFile] = File(...),
        date_label: Optional[str] = Form(None),
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
        orchestrator: ReportOrchestrationService = Depends(get_orchestrator),
    ):
        """
        Upload exam PDFs and result sheets.

        Files pair up by class name; each pair becomes one (class, date)
        session. Unpaired PDFs are used as textbook reference text.
        """
        try:
            uploads = []
            for file in files:
                is_valid, msg = validate_file_type(file.filename, settings.ALLOWED_EXTENSIONS)
                if not is_valid:
                    raise HTTPException(status_code=400, detail=f"{file.filename}: {msg}")

                file_bytes = await file.read()

                is_valid, msg = validate_file_size(file_bytes, settings.MAX_FILE_SIZE_MB)
                if not is_valid:
                    raise HTTPException(status_code=400, detail=f"{file.filename}: {msg}")

                uploads.append(UploadedFile(filename=file.filename, content=file_bytes))

            summary = await orchestrator.process_upload(user_id, uploads, date_label or None)
            return summary.model_dump()

        except HTTPException:
            raise
        except ReportError as e:
            raise _http_error(e)

    @router.get("")
    async def list_reports(
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
        orchestrator: ReportOrchestrationService = Depends(get_orchestrator),
    ):
        """List every stored (class, date) session."""
        try:
            summaries = await orchestrator.list_reports(user_id)
            return {"reports": [s.model_dump() for s in summaries]}
        except ReportError as e:
            raise _http_error(e)

    @router.get("/{class_name}/students/{student_name}/trend")
    async def student_trend(
        class_name: str,
        student_name: str,
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
        orchestrator: ReportOrchestrationService = Depends(get_orchestrator),
    ):
        """Student score against the class average, per exam date."""
        try:
            points = await orchestrator.score_trend(user_id, class_name, student_name)
            return {
                "class_name": class_name,
                "student_name": student_name,
                "points": [p.model_dump() for p in points],
            }
        except ReportError as e:
            raise _http_error(e)

    @router.get("/{class_name}/{date_label}")
    async def class_report(
        class_name: str,
        date_label: str,
        page: int = 1,
        enrich: bool = True,
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
        orchestrator: ReportOrchestrationService = Depends(get_orchestrator),
    ):
        """Class report; missing AI analysis is fetched unless enrich=false."""
        try:
            view = await orchestrator.view_report(user_id, class_name, date_label, page=page, enrich=enrich)
            return view.model_dump(mode="json")
        except ReportError as e:
            raise _http_error(e)

    @router.get("/{class_name}/{date_label}/students/{student_name}")
    async def student_report(
        class_name: str,
        date_label: str,
        student_name: str,
        page: int = 1,
        enrich: bool = True,
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
        orchestrator: ReportOrchestrationService = Depends(get_orchestrator),
    ):
        """Individual student report."""
        try:
            view = await orchestrator.view_report(
                user_id, class_name, date_label, student_name=student_name, page=page, enrich=enrich
            )
            return view.model_dump(mode="json")
        except ReportError as e:
            raise _http_error(e)

    return router

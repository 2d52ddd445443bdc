"""Services for reading uploads, aggregating results and building reports."""

from .document_extraction import DocumentExtractionService
from .ai_gateway import GeminiConfig, GeminiGateway
from .enrichment import EnrichmentService
from .orchestration import ReportOrchestrationService

__all__ = [
    "DocumentExtractionService",
    "GeminiConfig",
    "GeminiGateway",
    "EnrichmentService",
    "ReportOrchestrationService",
]

"""Domain errors raised by the report pipeline."""

from typing import Optional


class ReportError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class ParseError(ReportError):
    """An uploaded spreadsheet or PDF could not be read."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Failed to parse '{filename}': {reason}")


class MissingColumnError(ReportError):
    """The spreadsheet lacks a column the aggregator needs."""

    def __init__(self, column: str, available: Optional[list] = None):
        self.column = column
        self.available = available or []
        detail = f"Required column not found: {column}"
        if self.available:
            detail += f" (headers: {', '.join(map(str, self.available))})"
        super().__init__(detail)


class PairingEmptyError(ReportError):
    """No (spreadsheet, pdf) pair could be formed from an upload batch."""


class MissingDependencyError(ReportError):
    """An AI artifact was requested before the artifact it depends on exists."""


class ResponseFormatError(ReportError):
    """The AI service replied with something that is not a JSON object."""


class AIServiceError(ReportError):
    """The AI service call failed or returned no text."""


class PersistenceError(ReportError):
    """Loading or saving the dataset document failed."""


class SessionNotFoundError(ReportError):
    """No class session exists for the requested (class, date)."""


class StudentNotFoundError(ReportError):
    """The requested student is not part of the class session."""

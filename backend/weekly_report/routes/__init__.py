"""API routes."""

from .report_routes import create_report_routes

__all__ = ["create_report_routes"]

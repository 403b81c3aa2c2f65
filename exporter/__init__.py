"""Export - runs a connector's read side into an export directory."""

from exporter.orchestrator import ExportOrchestrator, ExportResult

__all__ = ["ExportOrchestrator", "ExportResult"]

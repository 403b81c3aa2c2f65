"""Migration - replays an export directory into a target connector."""

from migration.engine import MigrationEngine, MigrationResult, TicketPreview, build_draft, pending_tickets

__all__ = ["MigrationEngine", "MigrationResult", "TicketPreview", "build_draft", "pending_tickets"]

"""Core data models - platform-neutral canonical types.

This package contains all canonical data models that are intentionally
independent of any specific helpdesk platform.
"""

from core.models.canonical import (
    # Base
    CanonicalBase,
    utc_now_iso,
    parse_timestamp,

    # Vocabularies
    TicketStatus,
    TicketPriority,
    MessageType,

    # Entities
    Ticket,
    Message,
    Customer,
    Organization,
    KBArticle,
    Rule,

    # Run artifacts
    ExportCounts,
    ExportManifest,
    MigrationEntry,
)
from core.models.refs import DataReference

__all__ = [
    "CanonicalBase",
    "utc_now_iso",
    "parse_timestamp",
    "TicketStatus",
    "TicketPriority",
    "MessageType",
    "Ticket",
    "Message",
    "Customer",
    "Organization",
    "KBArticle",
    "Rule",
    "ExportCounts",
    "ExportManifest",
    "MigrationEntry",
    "DataReference",
]

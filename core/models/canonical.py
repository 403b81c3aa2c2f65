"""Core canonical data models - platform-neutral helpdesk entities.

These models represent exported helpdesk data in a standardized format
that is independent of any specific platform (Zendesk, Freshdesk, etc.).

Platform-specific field mappings are handled in /connectors/. Every record
is written once per export run as one JSONL line and never updated in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Vocabularies
# =============================================================================

class TicketStatus(str, Enum):
    """Canonical ticket status."""
    OPEN = "open"
    PENDING = "pending"
    ON_HOLD = "on_hold"
    SOLVED = "solved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    """Canonical ticket priority."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MessageType(str, Enum):
    """Public reply or internal note."""
    REPLY = "reply"
    NOTE = "note"


# =============================================================================
# Base Model
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical records.

    Field names are snake_case in Python and camelCase on disk.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, use_enum_values=True)

    def to_record(self) -> dict:
        """Serialize to the on-disk JSON shape (camelCase, no null fields)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def utc_now_iso() -> str:
    """Current time as ISO-8601 UTC with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime, or None."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Tickets & Messages
# =============================================================================

class Ticket(CanonicalBase):
    """A support ticket.

    ``id`` is ``"<sourcePrefix>-<externalId>"`` and therefore unique across
    every source system exporting into the same directory.
    """
    id: str
    external_id: str = Field(..., alias="externalId")
    source: str
    subject: str = ""
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.NORMAL
    assignee: Optional[str] = None
    requester: str = ""
    tags: List[str] = Field(default_factory=list)
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value):
        if value is None:
            return []
        seen = []
        for tag in value:
            tag = str(tag).strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen


class Message(CanonicalBase):
    """One entry of a ticket conversation thread."""
    id: str
    ticket_id: str = Field(..., alias="ticketId")
    author: str = ""
    body: str = ""
    body_html: Optional[str] = Field(default=None, alias="bodyHtml")
    type: MessageType = MessageType.REPLY
    created_at: str = Field(..., alias="createdAt")

    @property
    def is_note(self) -> bool:
        return self.type == MessageType.NOTE.value

    def sort_key(self):
        """Chronological sort key; unparseable timestamps sort by raw string."""
        parsed = parse_timestamp(self.created_at)
        if parsed is None:
            return (1, 0.0, self.created_at)
        return (0, parsed.timestamp(), self.created_at)


# =============================================================================
# Directory Entities
# =============================================================================

class Customer(CanonicalBase):
    """An end user or agent.

    ``org_id`` is a soft reference to ``Organization.id``; orphans are allowed.
    """
    id: str
    external_id: str = Field(..., alias="externalId")
    source: str
    name: str = ""
    email: str = ""
    phone: Optional[str] = None
    org_id: Optional[str] = Field(default=None, alias="orgId")


class Organization(CanonicalBase):
    id: str
    external_id: str = Field(..., alias="externalId")
    source: str
    name: str = ""
    domains: List[str] = Field(default_factory=list)


class KBArticle(CanonicalBase):
    id: str
    external_id: str = Field(..., alias="externalId")
    source: str
    title: str = ""
    body: str = ""
    category_path: List[str] = Field(default_factory=list, alias="categoryPath")


class Rule(CanonicalBase):
    """Rule-like metadata (macros, triggers, SLA policies, departments)."""
    id: str
    external_id: str = Field(..., alias="externalId")
    source: str
    type: str
    title: str = ""
    conditions: Any = None
    actions: Any = None
    active: bool = True


# =============================================================================
# Run Artifacts
# =============================================================================

class ExportCounts(BaseModel):
    """Per-entity record counts of one export run."""
    model_config = ConfigDict(populate_by_name=True)

    tickets: int = 0
    messages: int = 0
    customers: int = 0
    organizations: int = 0
    kb_articles: int = Field(default=0, alias="kbArticles")
    rules: int = 0


class ExportManifest(CanonicalBase):
    """Summary of a completed export run.

    Its presence on disk is the signal that the export finished.
    """
    source: str
    exported_at: str = Field(default_factory=utc_now_iso, alias="exportedAt")
    counts: ExportCounts = Field(default_factory=ExportCounts)


class MigrationEntry(CanonicalBase):
    """Migration progress for one source ticket."""
    dest_id: str = Field(..., alias="destId")
    migrated_at: str = Field(default_factory=utc_now_iso, alias="migratedAt")

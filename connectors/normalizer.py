"""Canonical Normalizer.

Maps remote platform vocabularies onto the canonical model:

1. Status/priority:
   - keyword buckets over free-text labels (ordered, first match wins,
     always a default), for platforms with string labels
   - direct lookup tables for platforms with numeric or fixed codes
   - fetched id -> label maps with a hard-coded fallback table
2. Canonical ids: ``"<prefix>-<externalId>"`` with one unique prefix per source
3. Message classification: every message is exactly one of reply / note
4. XML decoding with an explicit array allowlist, so a singleton repeat
   never collapses into a scalar

Examples:
    >>> normalize_status("kayako-classic", "In Progress")
    <TicketStatus.PENDING: 'pending'>
    >>> canonical_id("freshdesk", 42, "msg")
    'fd-msg-42'
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.models.canonical import MessageType, TicketPriority, TicketStatus, utc_now_iso


# =============================================================================
# Source prefixes
# =============================================================================

SOURCE_PREFIXES: Dict[str, str] = {
    "zendesk": "zd",
    "freshdesk": "fd",
    "groove": "gv",
    "helpcrunch": "hc",
    "kayako-classic": "kyc",
}


def validate_prefixes(prefixes: Mapping[str, str]) -> None:
    """Reject duplicate prefixes and prefixes that are a dash-segment of another.

    ``"zd"`` and ``"zd-x"`` would make ``zd-x-1`` ambiguous, so both are refused.
    """
    seen: Dict[str, str] = {}
    for source, prefix in prefixes.items():
        if not prefix or "-" in prefix:
            raise ValueError(f"Invalid prefix {prefix!r} for {source}")
        if prefix in seen:
            raise ValueError(f"Prefix {prefix!r} shared by {seen[prefix]} and {source}")
        seen[prefix] = source


validate_prefixes(SOURCE_PREFIXES)


def source_prefix(source: str) -> str:
    try:
        return SOURCE_PREFIXES[source]
    except KeyError:
        raise ValueError(f"No id prefix registered for source {source!r}") from None


def canonical_id(source: str, external_id: Any, kind: Optional[str] = None) -> str:
    """Synthesize a collision-free canonical id.

    Args:
        source: Source connector id
        external_id: Remote identifier
        kind: Entity kind segment ("msg", "user", "org", ...); None for tickets
    """
    prefix = source_prefix(source)
    if kind:
        return f"{prefix}-{kind}-{external_id}"
    return f"{prefix}-{external_id}"


# =============================================================================
# Keyword buckets
# =============================================================================

@dataclass
class KeywordBuckets:
    """Ordered substring buckets; the first bucket with a matching keyword wins."""
    buckets: Sequence[Tuple[Any, Tuple[str, ...]]]
    default: Any

    def classify(self, label: Optional[str]) -> Any:
        if label is None:
            return self.default
        lower = str(label).strip().lower()
        if not lower:
            return self.default
        for value, keywords in self.buckets:
            if any(keyword in lower for keyword in keywords):
                return value
        return self.default


STATUS_BUCKETS = KeywordBuckets(
    buckets=(
        (TicketStatus.OPEN, ("open", "new", "unread")),
        (TicketStatus.PENDING, ("in progress", "pending", "on hold")),
        (TicketStatus.ON_HOLD, ("hold", "wait")),
        (TicketStatus.SOLVED, ("solved", "resolved", "completed")),
        (TicketStatus.CLOSED, ("closed", "spam")),
    ),
    default=TicketStatus.OPEN,
)

PRIORITY_BUCKETS = KeywordBuckets(
    buckets=(
        (TicketPriority.LOW, ("low",)),
        (TicketPriority.HIGH, ("high",)),
        (TicketPriority.URGENT, ("urgent", "critical", "emergency")),
    ),
    default=TicketPriority.NORMAL,
)


# =============================================================================
# Direct lookup tables
# =============================================================================

# Raw values are compared as lower-cased strings
STATUS_TABLES: Dict[str, Dict[str, TicketStatus]] = {
    "zendesk": {
        "new": TicketStatus.OPEN, "open": TicketStatus.OPEN, "pending": TicketStatus.PENDING,
        "hold": TicketStatus.ON_HOLD, "solved": TicketStatus.SOLVED, "closed": TicketStatus.CLOSED,
    },
    "freshdesk": {
        "2": TicketStatus.OPEN, "3": TicketStatus.PENDING, "4": TicketStatus.SOLVED, "5": TicketStatus.CLOSED,
    },
    "groove": {
        "unread": TicketStatus.OPEN, "opened": TicketStatus.OPEN, "pending": TicketStatus.PENDING,
        "closed": TicketStatus.CLOSED, "spam": TicketStatus.CLOSED,
    },
    "helpcrunch": {
        # 1=New 2=Opened 3=Pending 4=On-hold 5=Closed 6=No-communication 7=Empty
        "1": TicketStatus.OPEN, "2": TicketStatus.OPEN, "3": TicketStatus.PENDING,
        "4": TicketStatus.ON_HOLD, "5": TicketStatus.CLOSED, "6": TicketStatus.CLOSED,
        "7": TicketStatus.CLOSED,
    },
}

PRIORITY_TABLES: Dict[str, Dict[str, TicketPriority]] = {
    "zendesk": {
        "low": TicketPriority.LOW, "normal": TicketPriority.NORMAL,
        "high": TicketPriority.HIGH, "urgent": TicketPriority.URGENT,
    },
    "freshdesk": {
        "1": TicketPriority.LOW, "2": TicketPriority.NORMAL,
        "3": TicketPriority.HIGH, "4": TicketPriority.URGENT,
    },
}


def _lookup_key(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    return str(raw).strip().lower()


def normalize_status(source: str, raw: Any) -> TicketStatus:
    """Map a raw status code or label to a canonical status (total)."""
    table = STATUS_TABLES.get(source)
    if table is not None:
        return table.get(_lookup_key(raw), STATUS_BUCKETS.default)
    return STATUS_BUCKETS.classify(raw)


def normalize_priority(source: str, raw: Any) -> TicketPriority:
    """Map a raw priority code or label to a canonical priority (total)."""
    table = PRIORITY_TABLES.get(source)
    if table is not None:
        return table.get(_lookup_key(raw), PRIORITY_BUCKETS.default)
    return PRIORITY_BUCKETS.classify(raw)


@dataclass
class LabelLookup:
    """A fetched id -> label map with a hard-coded fallback.

    Used for platforms whose tickets carry numeric status/priority ids that
    only a metadata endpoint can translate.
    """
    fallback: Dict[str, str]
    buckets: KeywordBuckets
    labels: Dict[str, str] = field(default_factory=dict)
    degraded: bool = False

    def load(self, labels: Optional[Mapping[Any, Any]]) -> None:
        """Install fetched labels; None or empty degrades to the fallback table."""
        if labels:
            self.labels = {str(k): str(v) for k, v in labels.items()}
            self.degraded = False
        else:
            self.labels = dict(self.fallback)
            self.degraded = True

    @property
    def active(self) -> Dict[str, str]:
        return self.labels or self.fallback

    def label_for(self, raw_id: Any) -> Optional[str]:
        return self.active.get(_lookup_key(raw_id))

    def classify(self, raw_id: Any) -> Any:
        return self.buckets.classify(self.label_for(raw_id))

    def id_for(self, canonical: Any) -> Optional[str]:
        """Reverse lookup: first remote id whose label classifies to ``canonical``."""
        wanted = getattr(canonical, "value", canonical)
        for raw_id, label in self.active.items():
            value = self.buckets.classify(label)
            if getattr(value, "value", value) == wanted:
                return raw_id
        return None


KAYAKO_CLASSIC_STATUS_FALLBACK = {"1": "Open", "2": "In Progress", "3": "Closed"}
KAYAKO_CLASSIC_PRIORITY_FALLBACK = {"1": "Normal", "2": "High", "3": "Urgent", "4": "Low"}


# =============================================================================
# Reverse (write) vocabularies
# =============================================================================

REVERSE_STATUS: Dict[str, Dict[str, Any]] = {
    "zendesk": {"open": "open", "pending": "pending", "on_hold": "hold", "solved": "solved", "closed": "closed"},
    "freshdesk": {"open": 2, "pending": 3, "on_hold": 3, "solved": 4, "closed": 5},
    "groove": {"open": "opened", "pending": "pending", "on_hold": "pending", "solved": "closed", "closed": "closed"},
}

REVERSE_PRIORITY: Dict[str, Dict[str, Any]] = {
    "zendesk": {"low": "low", "normal": "normal", "high": "high", "urgent": "urgent"},
    "freshdesk": {"low": 1, "normal": 2, "high": 3, "urgent": 4},
}


def to_target_status(target: str, status: Any) -> Optional[Any]:
    """Canonical status in a target's vocabulary, or None if it has no such concept."""
    table = REVERSE_STATUS.get(target)
    if table is None:
        return None
    return table.get(getattr(status, "value", status))


def to_target_priority(target: str, priority: Any) -> Optional[Any]:
    """Canonical priority in a target's vocabulary, or None if it has no such concept."""
    table = REVERSE_PRIORITY.get(target)
    if table is None:
        return None
    return table.get(getattr(priority, "value", priority))


# =============================================================================
# Messages
# =============================================================================

_TRUE_STRINGS = {"1", "true", "yes", "y", "on"}


def is_truthy(flag: Any) -> bool:
    """Interpret boolean-ish API flags ("1", "true", 1, True)."""
    if isinstance(flag, bool):
        return flag
    if flag is None:
        return False
    if isinstance(flag, (int, float)):
        return flag != 0
    return str(flag).strip().lower() in _TRUE_STRINGS


def message_type(is_note: Any) -> MessageType:
    """Classify a message from a private/note flag."""
    return MessageType.NOTE if is_truthy(is_note) else MessageType.REPLY


# =============================================================================
# Values & timestamps
# =============================================================================

def epoch_to_iso(value: Any) -> str:
    """UNIX seconds (int or numeric string) to ISO-8601 UTC; now when unparseable."""
    try:
        seconds = int(float(str(value).strip()))
    except (TypeError, ValueError):
        return utc_now_iso()
    return (
        datetime.fromtimestamp(seconds, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def split_tags(value: Any) -> List[str]:
    """Tags from a list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(t).strip() for t in value if str(t).strip()]
    return [t.strip() for t in str(value).split(",") if t.strip()]


def ensure_list(value: Any) -> List[Any]:
    """Wrap a scalar/dict in a list; None and "" become []."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def get_text(node: Any) -> str:
    """Text content of a decoded XML node (or a plain value)."""
    if node is None:
        return ""
    if isinstance(node, dict):
        return str(node.get("#text", ""))
    return str(node)


def get_number(node: Any) -> int:
    """Integer content of a decoded XML node; 0 when not numeric."""
    try:
        return int(get_text(node).strip())
    except ValueError:
        return 0


# =============================================================================
# XML decoding
# =============================================================================

# Element names that are always lists, even when exactly one is present
XML_ARRAY_TAGS: FrozenSet[str] = frozenset({
    "ticket", "ticketpost", "ticketnote", "user", "userorganization",
    "kbarticle", "department", "ticketstatus", "ticketpriority",
    "tickettype", "staff",
})


def _element_to_value(element: ET.Element, array_tags: FrozenSet[str]) -> Any:
    children = list(element)
    text = (element.text or "").strip()

    if not children and not element.attrib:
        return text

    node: Dict[str, Any] = {f"@_{k}": v for k, v in element.attrib.items()}
    for child in children:
        value = _element_to_value(child, array_tags)
        tag = child.tag
        if tag in array_tags:
            node.setdefault(tag, []).append(value)
        elif tag in node:
            existing = node[tag]
            if isinstance(existing, list):
                existing.append(value)
            else:
                node[tag] = [existing, value]
        else:
            node[tag] = value
    if text:
        node["#text"] = text
    return node


def parse_xml(text: str, array_tags: Iterable[str] = XML_ARRAY_TAGS) -> Dict[str, Any]:
    """Decode an XML document into nested dicts.

    Attributes become ``@_name`` keys, mixed text becomes ``#text``, and any
    element in ``array_tags`` is always a list.

    Raises:
        ValueError: If the document is not well-formed
    """
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError as e:
        raise ValueError(str(e)) from e
    return {root.tag: _element_to_value(root, frozenset(array_tags))}

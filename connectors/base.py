"""Abstract Helpdesk Connector Interface.

Every platform adapter implements this interface, resolved once from the
registry by connector id. The export orchestrator and migration engine depend
ONLY on this interface; no platform payload shapes leak through it.

Connectors implement it to:
1. Authenticate and verify credentials
2. Read tickets, messages and directory data, normalized to canonical records
3. Write tickets and replay conversation messages (migration target)

Key Design Principles:
- Read methods return CANONICAL models (Ticket, Message, Customer, ...)
- Write methods take a TicketDraft and return a CreatedTicketRef
- Per-run mutable state lives in MigrationContext, never in module globals
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from connectors.auth import AuthStrategy
from connectors.client import ExecutorConfig, RequestExecutor
from connectors.config import ConnectorConfig
from connectors.errors import ConfigError, HelpdeskError
from connectors.normalizer import canonical_id, ensure_list
from connectors.pagination import NextCursorPagination, PaginationStrategy, paginate, paginate_cursor, with_query
from core.models.canonical import CanonicalBase, Customer, Message, Ticket, TicketPriority, TicketStatus
from core.observability.logging import get_logger

logger = get_logger(__name__)


def items_at(data: Any, key: Optional[str]) -> List[Any]:
    """Items under a dotted response key ("tickets", "tickets.ticket")."""
    if key is None:
        return ensure_list(data) if data != {} else []
    node = data
    for part in key.split("."):
        if not isinstance(node, dict):
            return []
        node = node.get(part)
    return ensure_list(node)


# =============================================================================
# Write-side payloads
# =============================================================================

class TicketDraft(BaseModel):
    """A canonical ticket ready to be recreated on a target platform.

    Built by the migration engine from a Ticket plus its earliest message.
    """
    model_config = ConfigDict(use_enum_values=True)

    source_id: str = Field(..., description="Canonical Ticket.id being migrated")
    subject: str
    body: str
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.NORMAL
    tags: List[str] = Field(default_factory=list)
    requester: str = Field(default="", description="Requester email, or the raw requester key")
    requester_name: Optional[str] = None


class CreatedTicketRef(BaseModel):
    """Reference to a ticket created on the target platform."""
    id: str = Field(..., description="Target platform ticket id")
    display_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class VerifyResult:
    """Outcome of a lightweight authenticated call."""
    success: bool
    detail: str = ""
    ticket_count: Optional[int] = None
    error: Optional[str] = None


@dataclass
class MigrationContext:
    """Mutable state scoped to one migration run.

    Attributes:
        customers: Source customers, for requester/name resolution
        customer_cache: Requester email -> target customer id
    """
    customers: List[Customer] = field(default_factory=list)
    customer_cache: Dict[str, str] = field(default_factory=dict)

    def find_customer(self, key: str) -> Optional[Customer]:
        """Match a requester key against customer id, externalId or email."""
        if not key:
            return None
        for customer in self.customers:
            if key in (customer.id, customer.external_id, customer.email):
                return customer
        return None


# =============================================================================
# Export plumbing
# =============================================================================

@dataclass
class SubResource:
    """One per-ticket listing (comments, posts, notes) fetched independently."""
    name: str
    fetch: Callable[[], Awaitable[List[Message]]]


@dataclass
class ExportSection:
    """A top-level listing exported after tickets.

    Attributes:
        name: Label used in logs ("users", "agents", "sla policies", ...)
        entity: Target entity file key (see core.storage.artifacts.ENTITY_FILES)
        fetch: Factory returning an async iterator of canonical records
    """
    name: str
    entity: str
    fetch: Callable[[], AsyncIterator[CanonicalBase]]


# =============================================================================
# Abstract Connector Interface
# =============================================================================

class HelpdeskConnector(ABC):
    """Abstract base class for helpdesk connectors.

    Implementations:
    - connectors/zendesk.py
    - connectors/freshdesk.py
    - connectors/groove.py
    - connectors/helpcrunch.py
    - connectors/kayako_classic.py
    """

    name: str = ""
    supports_notes: bool = True

    def __init__(
        self,
        config: ConnectorConfig,
        session: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize connector.

        Args:
            config: Resolved credentials for this connector
            session: Optional aiohttp-compatible session (tests)
            sleep: Backoff sleep coroutine
        """
        self.config = config
        self.executor = RequestExecutor(self.executor_config(), self.auth_strategy(), session=session, sleep=sleep)

    # =========================================================================
    # Transport
    # =========================================================================

    @abstractmethod
    def executor_config(self) -> ExecutorConfig:
        pass

    @abstractmethod
    def auth_strategy(self) -> AuthStrategy:
        pass

    async def request(self, endpoint: str, method: str = "GET", body: Optional[Any] = None) -> Any:
        return await self.executor.execute(endpoint, method=method, body=body)

    async def connect(self) -> None:
        await self.executor.connect()

    async def disconnect(self) -> None:
        await self.executor.disconnect()

    async def __aenter__(self) -> "HelpdeskConnector":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def cid(self, external_id: Any, kind: Optional[str] = None) -> str:
        """Canonical id for a record of this source."""
        return canonical_id(self.name, external_id, kind)

    async def iter_listing(
        self,
        path: str,
        key: Optional[str],
        strategy: PaginationStrategy,
        query: Callable[[int], Dict[str, Any]],
    ) -> AsyncIterator[Any]:
        """Yield every item of a paginated JSON listing.

        Args:
            path: Endpoint path (may already carry a query string)
            key: Response key holding the items; None when the body is the list
            strategy: Advance/termination policy
            query: Position -> paging query parameters
        """
        async def fetch_page(position: int) -> List[Any]:
            data = await self.request(with_query(path, query(position)))
            return items_at(data, key)

        async for batch in paginate(strategy, fetch_page):
            for item in batch:
                yield item

    async def iter_cursor_listing(self, strategy: NextCursorPagination, key: Optional[str]) -> AsyncIterator[Any]:
        """Yield every item of a listing that hands back its own next cursor."""
        async for data in paginate_cursor(strategy, self.request):
            for item in items_at(data, key):
                yield item

    # =========================================================================
    # Verify
    # =========================================================================

    async def verify(self) -> VerifyResult:
        """Check credentials with a lightweight call. Never raises for API errors."""
        try:
            return await self._verify()
        except HelpdeskError as e:
            return VerifyResult(success=False, error=str(e))

    @abstractmethod
    async def _verify(self) -> VerifyResult:
        pass

    # =========================================================================
    # Export (read side)
    # =========================================================================

    async def load_metadata(self) -> None:
        """Fetch lookup tables needed for normalization. Must not raise."""
        return None

    @abstractmethod
    def iter_raw_tickets(self) -> AsyncIterator[Any]:
        """Page through raw ticket payloads."""
        pass

    @abstractmethod
    def normalize_ticket(self, raw: Any) -> Ticket:
        """Convert one raw ticket payload into a canonical Ticket."""
        pass

    @abstractmethod
    def ticket_sub_resources(self, raw: Any) -> List[SubResource]:
        """Per-ticket message listings, each fetched and failed independently."""
        pass

    def sections(self) -> List[ExportSection]:
        """Top-level sections exported after tickets, in order."""
        return []

    async def export(self, out_dir: Union[str, Path]):
        """Export everything into ``out_dir`` and return an ExportResult."""
        # Imported here to avoid a circular import
        from exporter.orchestrator import ExportOrchestrator

        return await ExportOrchestrator(self).run(out_dir)

    # =========================================================================
    # Migration (write side)
    # =========================================================================

    @abstractmethod
    async def create_ticket(self, draft: TicketDraft, context: MigrationContext) -> CreatedTicketRef:
        """Create a ticket whose first message is ``draft.body``."""
        pass

    @abstractmethod
    async def reply(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        """Append a public reply to a created ticket."""
        pass

    async def add_note(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        """Append an internal note; platforms without notes post a reply."""
        await self.reply(ticket_id, body, context)


# =============================================================================
# Connector Factory
# =============================================================================

_connector_registry: Dict[str, type] = {}


def register_connector(connector_type: str):
    """Decorator to register a connector implementation."""
    def decorator(cls):
        cls.name = connector_type
        _connector_registry[connector_type] = cls
        return cls
    return decorator


def create_connector(config: ConnectorConfig, **kwargs) -> HelpdeskConnector:
    """Create a connector instance from configuration.

    Args:
        config: ConnectorConfig with connector_type specified
        **kwargs: Passed to the connector (session, sleep)

    Returns:
        Configured connector instance

    Raises:
        ConfigError: If connector_type is not registered
    """
    connector_type = config.connector_type.lower()

    if connector_type not in _connector_registry:
        available = list(_connector_registry.keys())
        raise ConfigError(
            f"Unknown connector type: {connector_type}. "
            f"Available: {available}"
        )

    connector_class = _connector_registry[connector_type]
    return connector_class(config, **kwargs)


def list_available_connectors() -> List[str]:
    """List all registered connector types."""
    return list(_connector_registry.keys())

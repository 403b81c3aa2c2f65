"""Helpdesk Connectors - Pluggable helpdesk platform integrations.

This package contains the abstract connector interface and concrete
implementations for specific helpdesk platforms (Zendesk, Freshdesk, ...).

Canonical models are platform-neutral. This package handles:
- Platform-specific authentication
- Pagination and rate-limit backoff
- Data transformation (platform payload <-> canonical records)
- Ticket creation and message replay for migrations

Key Design Principle:
- The export orchestrator and migration engine depend ONLY on HelpdeskConnector
- Read methods return canonical records (Ticket, Message, ...)

To add a new platform:
1. Create a new module (e.g., helpscout.py)
2. Implement the HelpdeskConnector interface
3. Register using the @register_connector decorator and import it below
"""

from connectors.base import (
    # Core interface
    HelpdeskConnector,
    MigrationContext,
    VerifyResult,
    TicketDraft,
    CreatedTicketRef,
    SubResource,
    ExportSection,

    # Factory functions
    create_connector,
    register_connector,
    list_available_connectors,
)
from connectors.config import ConnectorConfig, load_connector_config, load_env_file
from connectors.errors import (
    HelpdeskError,
    ConfigError,
    ApiError,
    AuthError,
    NotFoundError,
    RateLimitExceeded,
    MalformedResponse,
    PartialFailure,
)

# Importing the implementations registers them
from connectors import freshdesk, groove, helpcrunch, kayako_classic, zendesk  # noqa: F401

__all__ = [
    # Core interface
    "HelpdeskConnector",
    "MigrationContext",
    "VerifyResult",
    "TicketDraft",
    "CreatedTicketRef",
    "SubResource",
    "ExportSection",

    # Factory
    "create_connector",
    "register_connector",
    "list_available_connectors",

    # Config
    "ConnectorConfig",
    "load_connector_config",
    "load_env_file",

    # Errors
    "HelpdeskError",
    "ConfigError",
    "ApiError",
    "AuthError",
    "NotFoundError",
    "RateLimitExceeded",
    "MalformedResponse",
    "PartialFailure",
]

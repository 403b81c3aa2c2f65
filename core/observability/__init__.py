"""
Observability Module for helpdesk export and migration runs

Provides:
- Structured logging with correlation IDs (connector, run, stage, ticket)
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    get_correlation_context,
    with_correlation,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "get_correlation_context",
    "with_correlation",
]

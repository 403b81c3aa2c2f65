"""
Observability Validation Test

Validates the logging stack used by export and migration runs:
1. Correlation context (connector, run, stage, ticket) nests and resets
2. StructuredFormatter emits one JSON object per record with the context
3. HumanReadableFormatter shows connector/stage/ticket inline
4. CorrelatedLogger passes extra fields through
"""

import json
import logging

import pytest


def test_observability_imports():
    """Verify the public logging API imports."""
    from core.observability import (
        get_logger,
        configure_logging,
        CorrelationContext,
        get_correlation_context,
        with_correlation,
    )
    assert get_logger is not None
    assert configure_logging is not None
    assert CorrelationContext is not None
    assert get_correlation_context is not None
    assert with_correlation is not None


def make_record(msg="Test message", level=logging.INFO, name="exporter.orchestrator"):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestCorrelationContext:
    """Test correlation context handling."""

    def test_context_creation(self):
        from core.observability.logging import CorrelationContext

        ctx = CorrelationContext(connector="zendesk", run_id="run-1", stage="tickets", ticket_id="zd-1")

        assert ctx.connector == "zendesk"
        assert ctx.to_dict() == {"connector": "zendesk", "run_id": "run-1", "stage": "tickets", "ticket_id": "zd-1"}

    def test_merge_ignores_none(self):
        from core.observability.logging import CorrelationContext

        ctx = CorrelationContext(connector="groove").merge(stage="users", ticket_id=None)
        assert ctx.to_dict() == {"connector": "groove", "stage": "users"}

    def test_nesting_and_reset(self):
        from core.observability.logging import get_correlation_context, with_correlation

        assert get_correlation_context().connector is None

        with with_correlation(connector="freshdesk", run_id="r1"):
            with with_correlation(ticket_id="fd-9"):
                inner = get_correlation_context()
                assert inner.connector == "freshdesk"
                assert inner.ticket_id == "fd-9"
            assert get_correlation_context().ticket_id is None

        assert get_correlation_context().connector is None

    def test_reset_after_exception(self):
        from core.observability.logging import get_correlation_context, with_correlation

        with pytest.raises(RuntimeError):
            with with_correlation(connector="helpcrunch"):
                raise RuntimeError("boom")

        assert get_correlation_context().connector is None


class TestFormatters:
    """Test log output formats."""

    def test_structured_formatter_json_output(self):
        from core.observability.logging import StructuredFormatter, with_correlation

        formatter = StructuredFormatter()

        with with_correlation(connector="kayako-classic", ticket_id="kyc-123"):
            data = json.loads(formatter.format(make_record()))

        assert data["message"] == "Test message"
        assert data["level"] == "INFO"
        assert data["logger"] == "exporter.orchestrator"
        assert data["connector"] == "kayako-classic"
        assert data["ticket_id"] == "kyc-123"
        assert data["timestamp"].endswith("Z")

    def test_structured_formatter_extra_fields(self):
        from core.observability.logging import StructuredFormatter

        record = make_record()
        record.extra_fields = {"failed": 2}

        data = json.loads(StructuredFormatter().format(record))
        assert data["failed"] == 2

    def test_human_readable_correlation(self):
        from core.observability.logging import HumanReadableFormatter, with_correlation

        with with_correlation(connector="groove", stage="customers"):
            line = HumanReadableFormatter().format(make_record(level=logging.WARNING))

        assert "[WARNING]" in line
        assert "[groove/customers]" in line
        assert line.endswith("Test message")

    def test_human_readable_without_context(self):
        from core.observability.logging import HumanReadableFormatter

        line = HumanReadableFormatter().format(make_record())
        assert "[-]" in line


class TestCorrelatedLogger:
    """Test the logger wrapper."""

    def test_same_instance_per_name(self):
        from core.observability.logging import get_logger

        assert get_logger("migration.engine") is get_logger("migration.engine")

    def test_records_reach_handlers(self, caplog):
        from core.observability.logging import get_logger

        logger = get_logger("exporter.test")
        with caplog.at_level(logging.INFO):
            logger.info("5 tickets exported (9 messages)", extra_fields={"tickets": 5})

        assert caplog.records[-1].getMessage() == "5 tickets exported (9 messages)"
        assert caplog.records[-1].extra_fields == {"tickets": 5}

    def test_disabled_level_skipped(self, caplog):
        from core.observability.logging import get_logger

        logger = get_logger("connectors.test")
        with caplog.at_level(logging.WARNING):
            logger.debug("noise")
        assert not [r for r in caplog.records if r.getMessage() == "noise"]

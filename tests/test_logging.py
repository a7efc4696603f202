"""Tests for structured logging module."""

import logging

import structlog
from structlog.testing import capture_logs

from memberflow.core.logging import (
    LoggerMixin,
    add_correlation_id,
    add_service_context,
    bind_contextvars,
    clear_contextvars,
    clear_correlation_id,
    configure_logging,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    unbind_contextvars,
)


class TestCorrelationId:
    """Tests for correlation ID management."""

    def setup_method(self) -> None:
        """Clear correlation ID before each test."""
        clear_correlation_id()

    def test_set_and_get_correlation_id(self) -> None:
        """Test setting and getting correlation ID."""
        assert get_correlation_id() is None

        correlation_id = set_correlation_id("sweep-2024-02-01")
        assert correlation_id == "sweep-2024-02-01"
        assert get_correlation_id() == "sweep-2024-02-01"

    def test_auto_generate_correlation_id(self) -> None:
        """Test auto-generation of correlation ID."""
        correlation_id = set_correlation_id()
        assert len(correlation_id) == 36  # UUID format

    def test_clear_correlation_id(self) -> None:
        """Test clearing correlation ID."""
        set_correlation_id("test-id")
        clear_correlation_id()
        assert get_correlation_id() is None


class TestProcessors:
    """Tests for the custom structlog processors."""

    def setup_method(self) -> None:
        clear_correlation_id()

    def test_correlation_id_added_when_set(self) -> None:
        set_correlation_id("abc")
        event_dict = add_correlation_id(logging.getLogger(), "info", {"event": "x"})
        assert event_dict["correlation_id"] == "abc"

    def test_correlation_id_omitted_when_unset(self) -> None:
        event_dict = add_correlation_id(logging.getLogger(), "info", {"event": "x"})
        assert "correlation_id" not in event_dict

    def test_service_context(self) -> None:
        event_dict = add_service_context(logging.getLogger(), "info", {"event": "x"})
        assert event_dict["service"] == "memberflow"


class TestStructuredLogging:
    """Tests for structured logging configuration."""

    def setup_method(self) -> None:
        """Clear context before each test."""
        clear_contextvars()

    def teardown_method(self) -> None:
        structlog.reset_defaults()

    def test_configure_logging_json_mode(self) -> None:
        """Test JSON logging configuration."""
        configure_logging(json_logs=True, log_level="info")

        root_logger = logging.getLogger()
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_configure_logging_console_mode(self) -> None:
        """Test console logging configuration."""
        configure_logging(json_logs=False, log_level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_reconfiguring_replaces_handler(self) -> None:
        configure_logging(json_logs=False)
        configure_logging(json_logs=True)
        assert len(logging.getLogger().handlers) == 1

    def test_get_logger(self) -> None:
        """Test getting named and unnamed loggers."""
        assert get_logger("contract_service") is not None
        assert get_logger() is not None


class TestContextVars:
    """Tests for context variable binding."""

    def setup_method(self) -> None:
        """Clear context before each test."""
        clear_contextvars()

    def test_bind_and_unbind(self) -> None:
        bind_contextvars(tenant_id="club-1", member_id="m-1")
        unbind_contextvars("member_id")
        assert structlog.contextvars.get_contextvars() == {"tenant_id": "club-1"}

    def test_clear_contextvars(self) -> None:
        """Test clearing all context variables."""
        bind_contextvars(tenant_id="club-1")
        clear_contextvars()
        assert structlog.contextvars.get_contextvars() == {}


class TestLoggerMixin:
    """Tests for LoggerMixin class."""

    def test_logger_mixin(self) -> None:
        """Test that LoggerMixin provides a working logger property."""

        class RenewalService(LoggerMixin):
            def renew(self) -> str:
                self.logger.info("subscription_renewed", months=1)
                return "done"

        with capture_logs() as logs:
            result = RenewalService().renew()

        assert result == "done"
        assert logs == [{"event": "subscription_renewed", "months": 1, "log_level": "info"}]

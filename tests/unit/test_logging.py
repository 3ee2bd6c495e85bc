"""Unit tests for specgen logging and observability.

This module tests the logging infrastructure, performance monitoring,
and observability hooks.
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from specgen.specgen_logging import (
    JsonFormatter,
    ObservabilityHooks,
    PerformanceMonitor,
    log_artifact_event,
    log_error_with_context,
    log_operation,
    log_performance,
    log_workflow_step,
    performance_monitor,
    setup_logging,
)


@pytest.fixture
def reset_specgen_logger():
    yield
    logger = logging.getLogger("specgen")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, "specgen.py", 10, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "module" in data
        assert "function" in data
        assert data["line"] == 10

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = logger.makeRecord("test", logging.ERROR, "specgen.py", 10, "Test message", (), sys.exc_info())

        data = json.loads(formatter.format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, "specgen.py", 10, "Test message", (), None)
        record.extra_fields = {"custom_field": "custom_value"}

        data = json.loads(formatter.format(record))

        assert data["custom_field"] == "custom_value"


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_metric(self):
        """Test recording a performance metric."""
        monitor = PerformanceMonitor()

        monitor.record_metric("test_metric", 42, {"tag": "test"})
        metrics = monitor.get_metrics("test_metric")

        assert metrics["test_metric"][0]["value"] == 42
        assert metrics["test_metric"][0]["tags"]["tag"] == "test"
        assert "timestamp" in metrics["test_metric"][0]

    def test_get_all_metrics(self):
        """Test getting all metrics."""
        monitor = PerformanceMonitor()

        monitor.record_metric("metric1", 1)
        monitor.record_metric("metric2", 2)
        monitor.record_metric("metric1", 3)
        all_metrics = monitor.get_metrics()

        assert [m["value"] for m in all_metrics["metric1"]] == [1, 3]
        assert [m["value"] for m in all_metrics["metric2"]] == [2]

    def test_clear(self):
        """Test clearing recorded metrics."""
        monitor = PerformanceMonitor()
        monitor.record_metric("metric1", 1)

        monitor.clear()

        assert monitor.get_metrics() == {}


class TestLogPerformance:
    """Test cases for log_performance decorator."""

    def setup_method(self):
        performance_monitor.clear()

    def test_log_performance_decorator(self):
        """Test the decorator on a plain function."""

        @log_performance("test_operation")
        def test_function():
            return "test_result"

        assert test_function() == "test_result"

        metrics = performance_monitor.get_metrics("test_operation_duration")["test_operation_duration"]
        assert len(metrics) == 1
        assert metrics[0]["value"] >= 0
        assert metrics[0]["tags"]["status"] == "success"

    def test_log_performance_decorator_with_exception(self):
        """Test the decorator records failures and re-raises."""

        @log_performance("test_operation")
        def test_function():
            raise ValueError("Test error")

        with pytest.raises(ValueError):
            test_function()

        metrics = performance_monitor.get_metrics("test_operation_duration")["test_operation_duration"]
        assert metrics[0]["tags"]["status"] == "error"
        assert metrics[0]["tags"]["error_type"] == "ValueError"

    @pytest.mark.asyncio
    async def test_log_performance_on_coroutine(self):
        """Test the decorator awaits coroutine functions."""

        @log_performance("async_operation")
        async def test_function():
            return 7

        assert await test_function() == 7
        assert len(performance_monitor.get_metrics("async_operation_duration")["async_operation_duration"]) == 1


class TestLogOperation:
    """Test cases for log_operation context manager."""

    def test_log_operation_success(self):
        """Test successful operation logging."""
        with patch("specgen.specgen_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with log_operation("test_operation", param1="value1"):
                pass

            assert mock_logger_instance.info.call_count == 2
            assert mock_logger_instance.error.called is False

    def test_log_operation_with_exception(self):
        """Test operation logging with exception."""
        with patch("specgen.specgen_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with pytest.raises(ValueError):
                with log_operation("test_operation"):
                    raise ValueError("Test error")

            assert mock_logger_instance.error.called
            assert "Test error" in str(mock_logger_instance.error.call_args)


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger_hooks(self):
        """Test registering and triggering hooks."""
        hooks = ObservabilityHooks()
        received = []

        hooks.register_hook("test_event", lambda **data: received.append(data))
        hooks.trigger_hooks("test_event", test_param="test_value")

        assert received == [{"test_param": "test_value"}]

    def test_unregister_hook(self):
        """Test a removed hook is no longer called."""
        hooks = ObservabilityHooks()
        callback = MagicMock()

        hooks.register_hook("test_event", callback)
        hooks.unregister_hook("test_event", callback)
        hooks.trigger_hooks("test_event")

        callback.assert_not_called()

    def test_log_workflow_event_passes_root(self):
        """Test workflow events reach hooks with the root and timestamp."""
        hooks = ObservabilityHooks()
        callback = MagicMock()
        hooks.register_hook("specs_generated", callback)

        hooks.log_workflow_event("specs_generated", root="/tmp/project", files=3)

        kwargs = callback.call_args.kwargs
        assert kwargs["root"] == "/tmp/project"
        assert kwargs["files"] == 3
        assert "timestamp" in kwargs

    def test_hook_failure_handling(self):
        """Test that hook failures don't reach the caller."""
        hooks = ObservabilityHooks()

        def failing_callback(**data):
            raise ValueError("Hook failed")

        hooks.register_hook("test_event", failing_callback)

        hooks.trigger_hooks("test_event", param="value")


class TestLoggingFunctions:
    """Test cases for logging convenience functions."""

    def test_log_workflow_step(self):
        """Test log_workflow_step event naming."""
        with patch("specgen.specgen_logging.observability_hooks") as mock_hooks:
            log_workflow_step("create-specs", root="/tmp/project", current_step="gap-analysis")

            mock_hooks.log_workflow_event.assert_called_once()
            call_args = mock_hooks.log_workflow_event.call_args
            assert call_args.args[0] == "workflow_step_create_specs"
            assert call_args.kwargs["root"] == "/tmp/project"
            assert call_args.kwargs["step_name"] == "create-specs"
            assert call_args.kwargs["current_step"] == "gap-analysis"

    def test_log_artifact_event(self):
        """Test artifact events carry kind and path."""
        with patch("specgen.specgen_logging.observability_hooks") as mock_hooks:
            log_artifact_event("written", "spec", "/tmp/project/spec.md", checksum="abc")

            call_args = mock_hooks.log_workflow_event.call_args
            assert call_args.args[0] == "artifact_written"
            assert call_args.kwargs["artifact_type"] == "spec"
            assert call_args.kwargs["checksum"] == "abc"

    def test_log_error_with_context(self):
        """Test log_error_with_context function."""
        with patch("specgen.specgen_logging.std_logging.getLogger") as mock_logger:
            error = ValueError("Test error")
            context = {"operation": "test_operation", "param": "value"}

            log_error_with_context(error, context, extra_param="extra_value")

            call_args = mock_logger.return_value.error.call_args
            assert "Test error" in call_args.args[0]
            fields = call_args.kwargs["extra"]["extra_fields"]
            assert fields["context"]["operation"] == "test_operation"
            assert fields["extra_param"] == "extra_value"
            assert fields["error_type"] == "ValueError"


class TestLoggingIntegration:
    """Integration tests for logging functionality."""

    def test_setup_logging(self, tmp_path, reset_specgen_logger):
        """Test the file handler writes JSON lines."""
        log_file = tmp_path / "test.log"

        setup_logging(log_level=logging.DEBUG, log_file=log_file)
        logging.getLogger("specgen.test").info("Test message")

        content = log_file.read_text()
        assert "Test message" in content
        for line in content.strip().split("\n"):
            json.loads(line)

    def test_end_to_end_logging_flow(self, tmp_path, reset_specgen_logger):
        """Test workflow steps and metrics reach the log file."""
        log_file = tmp_path / "test.log"
        setup_logging(log_level="DEBUG", log_file=log_file)

        log_workflow_step("create-specs", root=str(tmp_path))
        performance_monitor.record_metric("test_metric", 42)

        content = log_file.read_text()
        assert "workflow_step_create_specs" in content
        assert "Metric recorded: test_metric=42" in content

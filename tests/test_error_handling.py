"""
Tests for couchbase_bootstrap/utils/error_handling.py and the exception hierarchy.
"""

import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from couchbase_bootstrap.exceptions import (
    BootstrapError,
    ControlPlaneUnavailableError,
    DirectoryLookupError,
    MembershipConflictError,
    MembershipPreconditionError,
    RetryExhaustedError,
    ServiceError,
    TransientUnavailableError,
    UnexpectedControlPlaneError,
    ValidationError,
)
from couchbase_bootstrap.utils.error_handling import (
    MAX_OUTPUT_CHARS,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    categorize_error,
    determine_severity,
    handle_error,
)


# ===========================================================================
# Exception Hierarchy Tests
# ===========================================================================

class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_all_are_bootstrap_errors(self):
        """Every error kind derives from BootstrapError."""
        for cls in (ValidationError, TransientUnavailableError, MembershipConflictError,
                    UnexpectedControlPlaneError, DirectoryLookupError, ServiceError):
            assert issubclass(cls, BootstrapError)

    def test_specializations(self):
        """Precondition failures are validation errors; connection failures are transient."""
        assert issubclass(MembershipPreconditionError, ValidationError)
        assert issubclass(ControlPlaneUnavailableError, TransientUnavailableError)

    def test_output_is_kept(self):
        """The raw output travels with the error."""
        error = UnexpectedControlPlaneError("server-add failed", output="ERROR: boom")
        assert error.message == "server-add failed"
        assert error.output == "ERROR: boom"
        assert str(error) == "server-add failed"

    def test_retry_exhausted_message(self):
        """RetryExhaustedError names the operation, attempts and last error."""
        last = MembershipConflictError("busy", output="Rebalance failed")
        error = RetryExhaustedError("rebalance", 5, last)

        assert str(error) == "rebalance did not succeed after 5 attempts: busy"
        assert error.output == "Rebalance failed"

    def test_retry_exhausted_without_last_error(self):
        """Without a last error the message is just the summary."""
        error = RetryExhaustedError("wait", 3)
        assert str(error) == "wait did not succeed after 3 attempts"
        assert error.output is None


# ===========================================================================
# Categorization Tests
# ===========================================================================

class TestCategorizeError:
    """Tests for categorize_error and determine_severity."""

    @pytest.mark.parametrize("error,category,severity", [
        (ValidationError("x"), ErrorCategory.VALIDATION, ErrorSeverity.FATAL),
        (MembershipPreconditionError("x"), ErrorCategory.VALIDATION, ErrorSeverity.FATAL),
        (ControlPlaneUnavailableError("x"), ErrorCategory.TRANSIENT, ErrorSeverity.WARNING),
        (MembershipConflictError("x"), ErrorCategory.CONFLICT, ErrorSeverity.WARNING),
        (UnexpectedControlPlaneError("x"), ErrorCategory.CONTROL_PLANE, ErrorSeverity.FATAL),
        (DirectoryLookupError("x"), ErrorCategory.DIRECTORY, ErrorSeverity.FATAL),
        (RetryExhaustedError("op", 1), ErrorCategory.RETRY_EXHAUSTED, ErrorSeverity.FATAL),
        (ServiceError("x"), ErrorCategory.SYSTEM, ErrorSeverity.ERROR),
        (OSError("x"), ErrorCategory.SYSTEM, ErrorSeverity.ERROR),
        (RuntimeError("x"), ErrorCategory.UNKNOWN, ErrorSeverity.ERROR),
    ])
    def test_mapping(self, error, category, severity):
        """Each error kind maps to its category and severity."""
        assert categorize_error(error) == category
        assert determine_severity(error, category) == severity

    def test_keyboard_interrupt_is_fatal(self):
        """Interrupts are always fatal."""
        error = KeyboardInterrupt()
        assert determine_severity(error, categorize_error(error)) == ErrorSeverity.FATAL


# ===========================================================================
# Reporting Tests
# ===========================================================================

class TestHandleError:
    """Tests for handle_error and ErrorContext."""

    def test_logs_last_output(self, caplog):
        """The last control-plane output is part of the report."""
        error = UnexpectedControlPlaneError("rebalance failed", output="ERROR: Node not found")

        with caplog.at_level(logging.INFO):
            context = handle_error(error, "rebalance")

        assert context.category == ErrorCategory.CONTROL_PLANE
        assert context.last_output == "ERROR: Node not found"
        assert "Last control-plane output:" in caplog.text
        assert "ERROR: Node not found" in caplog.text
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_warning_has_no_stack_trace(self):
        """Warnings are reported without a stack trace."""
        context = ErrorContext(
            error=MembershipConflictError("busy"),
            category=ErrorCategory.CONFLICT,
            severity=ErrorSeverity.WARNING,
            operation="rebalance",
        )
        assert "Stack Trace" not in context.format_log_message()

    def test_long_output_is_truncated(self):
        """Huge outputs are cut to a bounded length."""
        context = ErrorContext(
            error=UnexpectedControlPlaneError("x", output="a" * (MAX_OUTPUT_CHARS + 100)),
            category=ErrorCategory.CONTROL_PLANE,
            severity=ErrorSeverity.FATAL,
            operation="op",
        )
        assert "[truncated]" in context.format_log_message()

    def test_additional_context(self):
        """Extra context is included and serializable."""
        context = handle_error(ValidationError("bad"), "config",
                               additional_context={'flag': '--services'})

        assert "flag: --services" in context.format_log_message()
        assert context.to_dict()['additional_context'] == {'flag': '--services'}
        assert context.to_dict()['error_type'] == 'ValidationError'

    def test_reraise(self):
        """reraise=True re-raises after logging."""
        with pytest.raises(DirectoryLookupError):
            handle_error(DirectoryLookupError("no group"), "lookup", reraise=True)

    def test_explicit_category(self):
        """An explicit category overrides the derived one."""
        context = handle_error(RuntimeError("x"), "op", category=ErrorCategory.SYSTEM)
        assert context.category == ErrorCategory.SYSTEM
        assert context.severity == ErrorSeverity.ERROR

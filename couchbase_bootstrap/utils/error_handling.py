"""
Error Handling Utilities for Couchbase Bootstrap

Provides consistent, verbose reporting of fatal conditions with:
1. Error categorization and severity levels
2. Detailed error logging with context
3. The last raw control-plane output attached to every report
4. Stack trace preservation

USAGE:
    from couchbase_bootstrap.utils.error_handling import handle_error, categorize_error

    try:
        manager.bootstrap(is_rally_point)
    except BootstrapError as e:
        handle_error(e, "bootstrap", category=categorize_error(e))
        return 1
"""

import logging
import sys
import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..exceptions import (
    DirectoryLookupError,
    MembershipConflictError,
    RetryExhaustedError,
    ServiceError,
    TransientUnavailableError,
    UnexpectedControlPlaneError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Longest slice of raw command output copied into an error report
MAX_OUTPUT_CHARS = 4000


class ErrorCategory(Enum):
    """Categories of errors for proper handling and reporting."""
    # Missing or conflicting input
    VALIDATION = "validation"

    # Node process or cluster not ready (retried)
    TRANSIENT = "transient"

    # Concurrent rebalance by another peer (retried)
    CONFLICT = "conflict"

    # Output not matching any known marker
    CONTROL_PLANE = "control_plane"

    # Fleet membership / region / group lookup
    DIRECTORY = "directory"

    # Retry budget exhausted
    RETRY_EXHAUSTED = "retry_exhausted"

    # Process/system errors (service start, files)
    SYSTEM = "system"

    # Unknown/uncategorized
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    # Informational - operation can continue
    INFO = "info"

    # Warning - expected and retried
    WARNING = "warning"

    # Error - operation failed
    ERROR = "error"

    # Fatal - process must exit non-zero
    FATAL = "fatal"


@dataclass
class ErrorContext:
    """Detailed context information for an error."""
    error: BaseException
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    last_output: Optional[str] = None
    additional_context: Dict[str, Any] = field(default_factory=dict)
    platform: str = field(default_factory=lambda: sys.platform)

    def __post_init__(self):
        if not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.error), self.error, self.error.__traceback__
            ))
        if self.last_output is None:
            self.last_output = getattr(self.error, 'output', None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'stack_trace': self.stack_trace,
            'last_output': self.last_output,
            'additional_context': self.additional_context,
            'platform': self.platform,
        }

    def format_log_message(self) -> str:
        """Format a detailed log message."""
        lines = [
            f"ERROR [{self.severity.value.upper()}] in {self.operation}",
            f"  Category: {self.category.value}",
            f"  Type: {type(self.error).__name__}",
            f"  Message: {self.error}",
            f"  Timestamp: {self.timestamp}",
        ]

        if self.additional_context:
            lines.append("  Context:")
            for key, value in self.additional_context.items():
                lines.append(f"    {key}: {value}")

        if self.last_output:
            output = self.last_output
            if len(output) > MAX_OUTPUT_CHARS:
                output = output[:MAX_OUTPUT_CHARS] + "... [truncated]"
            lines.append("  Last control-plane output:")
            for line in output.splitlines():
                lines.append(f"    {line}")

        if self.severity != ErrorSeverity.WARNING:
            lines.append("  Stack Trace:")
            for line in self.stack_trace.split('\n'):
                if line.strip():
                    lines.append(f"    {line}")

        return '\n'.join(lines)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map an exception to its error category."""
    if isinstance(error, RetryExhaustedError):
        return ErrorCategory.RETRY_EXHAUSTED
    if isinstance(error, ValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(error, MembershipConflictError):
        return ErrorCategory.CONFLICT
    if isinstance(error, TransientUnavailableError):
        return ErrorCategory.TRANSIENT
    if isinstance(error, UnexpectedControlPlaneError):
        return ErrorCategory.CONTROL_PLANE
    if isinstance(error, DirectoryLookupError):
        return ErrorCategory.DIRECTORY
    if isinstance(error, (ServiceError, OSError)):
        return ErrorCategory.SYSTEM
    return ErrorCategory.UNKNOWN


def determine_severity(
    error: BaseException,
    category: ErrorCategory,
) -> ErrorSeverity:
    """
    Determine the severity level for an error based on type and category.

    Transient conditions and rebalance conflicts are expected while peers
    converge; everything else that reaches the reporter ends the process.
    """
    if isinstance(error, (SystemExit, KeyboardInterrupt)):
        return ErrorSeverity.FATAL

    if category in (ErrorCategory.TRANSIENT, ErrorCategory.CONFLICT):
        return ErrorSeverity.WARNING

    if category in (
        ErrorCategory.VALIDATION,
        ErrorCategory.CONTROL_PLANE,
        ErrorCategory.DIRECTORY,
        ErrorCategory.RETRY_EXHAUSTED,
    ):
        return ErrorSeverity.FATAL

    return ErrorSeverity.ERROR


def handle_error(
    error: BaseException,
    operation: str,
    category: Optional[ErrorCategory] = None,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
    log_level: Optional[int] = None,
) -> ErrorContext:
    """
    Handle an error with comprehensive logging.

    Args:
        error: The exception that occurred
        operation: Name of the operation that failed
        category: Category of the error (derived from the type if not provided)
        severity: Severity level (auto-determined if not provided)
        additional_context: Additional context information
        reraise: Whether to re-raise the exception after handling
        log_level: Override the log level (auto-determined if not provided)

    Returns:
        ErrorContext with full error details
    """
    if category is None:
        category = categorize_error(error)

    if severity is None:
        severity = determine_severity(error, category)

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity,
        operation=operation,
        additional_context=additional_context or {},
    )

    if log_level is None:
        log_level_map = {
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.FATAL: logging.CRITICAL,
        }
        log_level = log_level_map.get(severity, logging.ERROR)

    logger.log(log_level, context.format_log_message())

    if reraise:
        raise error

    return context


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'categorize_error',
    'determine_severity',
    'handle_error',
]

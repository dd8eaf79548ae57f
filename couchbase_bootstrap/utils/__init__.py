"""
Utility modules for Couchbase Bootstrap.

Provides common utilities including:
- Error categorization and verbose fatal-error reporting
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    categorize_error,
    determine_severity,
    handle_error,
)

__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'categorize_error',
    'determine_severity',
    'handle_error',
]

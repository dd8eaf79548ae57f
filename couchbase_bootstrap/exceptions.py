"""
Couchbase Bootstrap Exceptions

Every fatal condition of the bootstrap protocol is a BootstrapError.
The ``output`` attribute carries the last raw control-plane output observed
before the failure so that it can be logged for diagnosis.
"""

from typing import Optional


class BootstrapError(Exception):
    """Base exception for all bootstrap errors."""

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.output = output


class ValidationError(BootstrapError):
    """Missing required input or conflicting settings. Never retried."""
    pass


class MembershipPreconditionError(ValidationError):
    """A membership step was attempted out of order (e.g. rebalance before add)."""
    pass


class TransientUnavailableError(BootstrapError):
    """The node process or the cluster is not ready yet."""
    pass


class ControlPlaneUnavailableError(TransientUnavailableError):
    """The control plane could not be reached at all (connection failure)."""
    pass


class MembershipConflictError(BootstrapError):
    """Another peer is rebalancing the cluster concurrently."""
    pass


class UnexpectedControlPlaneError(BootstrapError):
    """Command output matched neither a success nor a retryable marker."""
    pass


class DirectoryLookupError(BootstrapError):
    """Fleet membership, region or group lookup returned empty or malformed data."""
    pass


class ServiceError(BootstrapError):
    """Port configuration or service start-up failed."""
    pass


class RetryExhaustedError(BootstrapError):
    """A bounded retry policy ran out of attempts."""

    def __init__(self, operation: str, attempts: int,
                 last_error: Optional[BaseException] = None,
                 output: Optional[str] = None):
        message = f"{operation} did not succeed after {attempts} attempts"
        if last_error is not None:
            message = f"{message}: {last_error}"
        if output is None and isinstance(last_error, BootstrapError):
            output = last_error.output
        super().__init__(message, output=output)
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


__all__ = [
    'BootstrapError',
    'ValidationError',
    'MembershipPreconditionError',
    'TransientUnavailableError',
    'ControlPlaneUnavailableError',
    'MembershipConflictError',
    'UnexpectedControlPlaneError',
    'DirectoryLookupError',
    'ServiceError',
    'RetryExhaustedError',
]

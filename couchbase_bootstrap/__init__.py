"""
Couchbase Bootstrap - Core Components

Brings a fleet of freshly launched nodes together into one Couchbase
cluster: the oldest node initializes the cluster, every other node waits
for it, adds itself and rebalances.
"""

# Import logging first so that every module logger is a BootstrapLogger
from .logging_config import get_logger, setup_logging, configure_from_environment

from .constants import (
    Markers,
    Timeouts,
    RetryDefaults,
    DefaultPorts,
    Paths,
    Defaults,
    RuntimeConfig,
)
from .exceptions import (
    BootstrapError,
    ValidationError,
    MembershipPreconditionError,
    TransientUnavailableError,
    ControlPlaneUnavailableError,
    MembershipConflictError,
    UnexpectedControlPlaneError,
    DirectoryLookupError,
    ServiceError,
    RetryExhaustedError,
)
from .config import (
    ClusterConfig,
    MemoryQuota,
    NetworkPorts,
    Service,
    parse_services,
    plan_memory,
)
from .control_plane import CouchbaseCli, CommandResult, classify_response
from .retry import RetryPolicy, RetryPolicies, retry_until, retry_call
from .distributed import (
    ClusterManager,
    ClusterStatusProber,
    MembershipState,
    RallyPointSelector,
    select_rally_point,
)

__version__ = "1.0.0"

__all__ = [
    'get_logger',
    'setup_logging',
    'configure_from_environment',
    'Markers',
    'Timeouts',
    'RetryDefaults',
    'DefaultPorts',
    'Paths',
    'Defaults',
    'RuntimeConfig',
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
    'ClusterConfig',
    'MemoryQuota',
    'NetworkPorts',
    'Service',
    'parse_services',
    'plan_memory',
    'CouchbaseCli',
    'CommandResult',
    'classify_response',
    'RetryPolicy',
    'RetryPolicies',
    'retry_until',
    'retry_call',
    'ClusterManager',
    'ClusterStatusProber',
    'MembershipState',
    'RallyPointSelector',
    'select_rally_point',
]

"""
Distributed Deployment Package
Provides rally-point election and cluster membership for Couchbase nodes.
"""

from .fleet import (
    Instance,
    FleetDirectory,
    StaticFleetDirectory,
    FileFleetDirectory,
    AwsCliFleetDirectory,
)
from .rally_point import RallyPointSelector, select_rally_point
from .status import (
    ClusterStatus,
    ClusterStatusProber,
    Initialized,
    MembershipState,
    NodeEntry,
    NodeHealth,
    NodeMembership,
    NotInitialized,
)
from .cluster_manager import ClusterManager

__all__ = [
    'Instance',
    'FleetDirectory',
    'StaticFleetDirectory',
    'FileFleetDirectory',
    'AwsCliFleetDirectory',
    'RallyPointSelector',
    'select_rally_point',
    'ClusterStatus',
    'ClusterStatusProber',
    'Initialized',
    'MembershipState',
    'NodeEntry',
    'NodeHealth',
    'NodeMembership',
    'NotInitialized',
    'ClusterManager',
]

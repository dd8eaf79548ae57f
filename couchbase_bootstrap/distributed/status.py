"""
Cluster Status Prober - typed view of ``couchbase-cli server-list``.

server-list prints one line per node::

    ns_1@10.0.0.5 10.0.0.5:8091 healthy active
    ns_1@10.0.0.6 10.0.0.6:8091 healthy inactiveAdded

A node that has never been initialized answers with an "unknown pool"
error instead. Status is derived fresh on every probe and never cached.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from ..constants import Markers
from ..control_plane import CouchbaseCli
from ..exceptions import ControlPlaneUnavailableError
from ..logging_config import get_logger

logger = get_logger(__name__)


class NodeHealth(Enum):
    """Health column of a server-list line."""
    HEALTHY = "healthy"
    UNKNOWN = "unknown"
    OTHER = "other"


class NodeMembership(Enum):
    """Membership column of a server-list line."""
    ADDED = "added"     # inactiveAdded, inactiveFailed, ... (rebalance pending)
    ACTIVE = "active"


class MembershipState(Enum):
    """Progress of one node through the bootstrap protocol."""
    UNKNOWN = "unknown"
    NOT_INITIALIZED = "not_initialized"
    INITIALIZED = "initialized"
    NODE_ADDED = "node_added"
    NODE_ACTIVE = "node_active"


@dataclass(frozen=True)
class NodeEntry:
    """One node as reported by server-list."""
    node_id: str
    hostname: str
    port: int
    health: NodeHealth
    membership: NodeMembership
    raw_health: str = ""
    raw_membership: str = ""

    @property
    def address(self) -> str:
        return f"{self.hostname}:{self.port}"

    @property
    def is_added(self) -> bool:
        return self.health == NodeHealth.HEALTHY

    @property
    def is_active(self) -> bool:
        return self.is_added and self.membership == NodeMembership.ACTIVE


@dataclass(frozen=True)
class NotInitialized:
    """The node answers, but no cluster has been initialized on it."""
    raw_output: str

    is_initialized = False


@dataclass(frozen=True)
class Initialized:
    """The cluster exists; ``nodes`` is in server-list order."""
    nodes: Tuple[NodeEntry, ...]
    raw_output: str = ""

    is_initialized = True

    def find(self, address: str) -> Optional[NodeEntry]:
        for node in self.nodes:
            if node.address == address:
                return node
        return None

    def is_listed(self, address: str) -> bool:
        """True if ``address`` appears in the membership list at all, whatever its health."""
        return self.find(address) is not None

    def is_added(self, address: str) -> bool:
        node = self.find(address)
        return node is not None and node.is_added

    def is_active(self, address: str) -> bool:
        node = self.find(address)
        return node is not None and node.is_active


ClusterStatus = Union[NotInitialized, Initialized]


def _parse_health(value: str) -> NodeHealth:
    if value == "healthy":
        return NodeHealth.HEALTHY
    if value == "unknown":
        return NodeHealth.UNKNOWN
    return NodeHealth.OTHER


def parse_node_line(line: str) -> Optional[NodeEntry]:
    """Parse ``<node-id> <host:port> <health> <membership>``; None if the line is not a node."""
    parts = line.split()
    if len(parts) != 4:
        return None

    node_id, address, health, membership = parts
    hostname, sep, port = address.rpartition(':')
    if not sep or not hostname or not port.isdigit():
        return None

    return NodeEntry(
        node_id=node_id,
        hostname=hostname,
        port=int(port),
        health=_parse_health(health),
        membership=NodeMembership.ACTIVE if membership == "active" else NodeMembership.ADDED,
        raw_health=health,
        raw_membership=membership,
    )


def parse_server_list(output: str) -> Tuple[NodeEntry, ...]:
    """Parse every node line of server-list output, skipping anything else."""
    entries = []
    for line in output.splitlines():
        entry = parse_node_line(line.strip())
        if entry is not None:
            entries.append(entry)
    return tuple(entries)


def is_connection_failure(output: str) -> bool:
    return any(marker in output for marker in Markers.CONNECTION_FAILURES)


def classify_status(output: str) -> ClusterStatus:
    """
    Turn raw server-list output into a ClusterStatus.

    Raises:
        ControlPlaneUnavailableError: the output reports a connection
            failure rather than an answer from a running node
    """
    if Markers.UNKNOWN_POOL in output:
        return NotInitialized(output)

    if Markers.HEALTHY_ACTIVE in output:
        return Initialized(parse_server_list(output), output)

    if is_connection_failure(output):
        raise ControlPlaneUnavailableError("Control plane is not reachable", output=output)

    return NotInitialized(output)


def membership_state(status: Optional[ClusterStatus], address: str) -> MembershipState:
    """Where ``address`` stands in the protocol given a probe result."""
    if status is None:
        return MembershipState.UNKNOWN
    if not status.is_initialized:
        return MembershipState.NOT_INITIALIZED
    if status.is_active(address):
        return MembershipState.NODE_ACTIVE
    if status.is_added(address):
        return MembershipState.NODE_ADDED
    return MembershipState.INITIALIZED


class ClusterStatusProber:
    """Issues server-list against a node and classifies the answer."""

    def __init__(self, cli: CouchbaseCli):
        self.cli = cli

    def probe(self, cluster_address: str, username: str, password: str) -> ClusterStatus:
        """
        Query the cluster reachable at ``cluster_address`` (``host:port``).

        A failing exit status is expected against an uninitialized node and
        is classified, not raised.

        Raises:
            ControlPlaneUnavailableError: the node could not be reached
        """
        result = self.cli.server_list(cluster_address, username, password)
        status = classify_status(result.output)

        if status.is_initialized:
            logger.verbose(
                f"Cluster at {cluster_address} is initialized with {len(status.nodes)} node(s)"
            )
        else:
            logger.verbose(f"Cluster at {cluster_address} is not initialized")
        return status


__all__ = [
    'NodeHealth',
    'NodeMembership',
    'MembershipState',
    'NodeEntry',
    'NotInitialized',
    'Initialized',
    'ClusterStatus',
    'parse_node_line',
    'parse_server_list',
    'classify_status',
    'membership_state',
    'ClusterStatusProber',
]

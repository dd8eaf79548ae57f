"""
Cluster Manager - Couchbase cluster membership state machine.

Drives one node from "process started" to "active member of the cluster":

    UNKNOWN -> NOT_INITIALIZED -> INITIALIZED -> NODE_ADDED -> NODE_ACTIVE

Only the rally point initializes the cluster; every other node waits for
the cluster to exist, adds itself and rebalances. Each step first probes
the cluster and skips itself when a peer (or an earlier run of this
process) already completed it, so the whole sequence can be re-run from
scratch after a crash.
"""

import time
from typing import Callable, Optional

from .status import (
    ClusterStatus,
    ClusterStatusProber,
    MembershipState,
    membership_state,
)
from ..config import ClusterConfig, Service
from ..constants import Markers
from ..control_plane import CommandResult, CouchbaseCli, classify_response
from ..exceptions import (
    ControlPlaneUnavailableError,
    MembershipConflictError,
    MembershipPreconditionError,
    UnexpectedControlPlaneError,
)
from ..logging_config import get_logger
from ..retry import RetryPolicies, retry_call, retry_until

logger = get_logger(__name__)

REBALANCE_CONFLICT = "rebalance_conflict"


class ClusterManager:
    """
    Joins this node to the cluster.

    All control-plane traffic goes to the rally point's REST port; the
    node's own REST port is only used to wait for the local process.
    """

    def __init__(
        self,
        cli: CouchbaseCli,
        config: ClusterConfig,
        node_hostname: str,
        rally_point_hostname: str,
        policies: Optional[RetryPolicies] = None,
        prober: Optional[ClusterStatusProber] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize cluster manager.

        Args:
            cli: Control-plane client
            config: Immutable cluster configuration
            node_hostname: Hostname other nodes use to reach this node
            rally_point_hostname: Hostname of the elected rally point
            policies: Retry bounds (defaults plus environment overrides)
            prober: Status prober (built from ``cli`` if not provided)
            sleep: Sleep function used between retries
        """
        self.cli = cli
        self.config = config
        self.node_hostname = node_hostname
        self.rally_point_hostname = rally_point_hostname
        self.policies = policies or RetryPolicies.from_environment()
        self.prober = prober or ClusterStatusProber(cli)
        self._sleep = sleep
        self._last_output: Optional[str] = None

        logger.info(
            f"ClusterManager initialized: node={self.node_address}, "
            f"rally_point={self.rally_point_address}, cluster={config.name}"
        )

    # ------------------------------------------------------------------
    # Addresses and status
    # ------------------------------------------------------------------

    @property
    def node_address(self) -> str:
        return f"{self.node_hostname}:{self.config.ports.rest}"

    @property
    def rally_point_address(self) -> str:
        return f"{self.rally_point_hostname}:{self.config.ports.rest}"

    @property
    def is_rally_point(self) -> bool:
        return self.node_hostname == self.rally_point_hostname

    def get_status(self, address: Optional[str] = None) -> ClusterStatus:
        """Probe the cluster at ``address`` (the rally point by default)."""
        return self.prober.probe(
            address or self.rally_point_address,
            self.config.admin_username,
            self.config.admin_password,
        )

    def get_membership_state(self) -> MembershipState:
        """Where this node currently stands, as seen from the rally point."""
        try:
            status = self.get_status()
        except ControlPlaneUnavailableError:
            return MembershipState.UNKNOWN
        return membership_state(status, self.node_address)

    def _is_initialized(self, address: str) -> bool:
        try:
            status = self.get_status(address)
        except ControlPlaneUnavailableError as e:
            logger.verbose(f"{address} unreachable: {e}")
            self._last_output = e.output
            return False
        self._last_output = status.raw_output
        return status.is_initialized

    def _is_responding(self, address: str) -> bool:
        try:
            self.get_status(address)
        except ControlPlaneUnavailableError as e:
            logger.verbose(f"{address} not responding yet: {e}")
            self._last_output = e.output
            return False
        return True

    # ------------------------------------------------------------------
    # Waits
    # ------------------------------------------------------------------

    def wait_for_node_process(self) -> None:
        """Block until this node's own control plane answers server-list."""
        logger.info(f"Waiting for Couchbase to start on {self.node_address}")
        retry_until(
            lambda: self._is_responding(self.node_address),
            self.policies.process_start,
            f"wait for Couchbase on {self.node_address}",
            sleep=self._sleep,
            last_output=lambda: self._last_output,
        )
        logger.info(f"Couchbase is running on {self.node_address}")

    def wait_for_cluster_initialized(self) -> None:
        """Block until the rally point reports an initialized cluster."""
        logger.info(f"Waiting for cluster at {self.rally_point_address} to be initialized")
        retry_until(
            lambda: self._is_initialized(self.rally_point_address),
            self.policies.cluster_init,
            f"wait for cluster at {self.rally_point_address}",
            sleep=self._sleep,
            last_output=lambda: self._last_output,
        )
        logger.info(f"Cluster at {self.rally_point_address} is initialized")

    # ------------------------------------------------------------------
    # Membership operations
    # ------------------------------------------------------------------

    def initialize_cluster(self) -> bool:
        """
        Create the cluster on this node (rally point only).

        Returns:
            True if the cluster was created, False if it already existed

        Raises:
            UnexpectedControlPlaneError: cluster-init did not report success.
                Not retried: the state must be re-checked before trying again.
        """
        status = self.get_status(self.rally_point_address)
        if status.is_initialized:
            logger.info(f"Cluster at {self.rally_point_address} already initialized; skipping init")
            return False

        config = self.config
        logger.info(
            f"Initializing cluster {config.name} on {self.rally_point_hostname} "
            f"with services {config.services_csv}"
        )
        result = self.cli.cluster_init(
            host=self.rally_point_hostname,
            port=config.ports.rest,
            name=config.name,
            username=config.admin_username,
            password=config.admin_password,
            index_storage_setting=config.index_storage_mode,
            services=config.services_csv,
            data_ramsize=config.quota_for(Service.DATA),
            index_ramsize=config.quota_for(Service.INDEX),
            fts_ramsize=config.quota_for(Service.SEARCH),
        )
        self._expect(result, Markers.CLUSTER_INITIALIZED, "cluster-init")
        logger.notice(f"Cluster {config.name} initialized on {self.rally_point_address}")
        return True

    def add_node(self) -> bool:
        """
        Add this node to the cluster.

        Returns:
            True if the node was added, False if it was already a member

        Raises:
            UnexpectedControlPlaneError: server-add did not report success
        """
        status = self.get_status()
        if status.is_initialized and status.is_listed(self.node_address):
            node = status.find(self.node_address)
            logger.info(
                f"{self.node_address} already in cluster ({node.raw_health} {node.raw_membership}); "
                f"skipping server-add"
            )
            return False

        logger.info(f"Adding {self.node_address} to cluster at {self.rally_point_address}")
        result = self.cli.server_add(
            cluster=self.rally_point_address,
            username=self.config.admin_username,
            password=self.config.admin_password,
            node=self.node_address,
            index_storage_setting=self.config.index_storage_mode,
            services=self.config.services_csv,
        )
        self._expect(result, Markers.SERVER_ADDED, "server-add")
        logger.notice(f"{self.node_address} added to cluster")
        return True

    def rebalance(self) -> bool:
        """
        Rebalance the cluster until this node is active.

        Returns:
            True if a rebalance ran, False if the node was already active

        Raises:
            MembershipPreconditionError: the node has not been added yet
            RetryExhaustedError: rebalance conflicts outlasted the policy
            UnexpectedControlPlaneError: unrecognized rebalance output
        """
        status = self.get_status()
        state = membership_state(status, self.node_address)

        if state == MembershipState.NODE_ACTIVE:
            logger.info(f"{self.node_address} already active; skipping rebalance")
            return False
        # Listed but not yet healthy (e.g. warmup) still counts as added
        if state != MembershipState.NODE_ADDED and not (
            status.is_initialized and status.is_listed(self.node_address)
        ):
            raise MembershipPreconditionError(
                f"Cannot rebalance {self.node_address}: node must be added first "
                f"(state: {state.value})",
                output=status.raw_output,
            )

        return retry_call(
            self._rebalance_once,
            self.policies.rebalance,
            f"rebalance cluster at {self.rally_point_address}",
            retry_exceptions=(MembershipConflictError,),
            sleep=self._sleep,
        )

    def _rebalance_once(self) -> bool:
        # A peer's rebalance may have activated this node since the last try
        if self.get_status().is_active(self.node_address):
            logger.info(f"{self.node_address} became active; no rebalance needed")
            return False

        logger.info(f"Rebalancing cluster at {self.rally_point_address}")
        result = self.cli.rebalance(
            cluster=self.rally_point_address,
            username=self.config.admin_username,
            password=self.config.admin_password,
        )
        outcome = classify_response(
            result.output,
            Markers.REBALANCE_COMPLETE,
            {Markers.REBALANCE_RETRY: REBALANCE_CONFLICT},
        )

        if outcome.is_success:
            logger.notice(f"Rebalance complete; {self.node_address} is active")
            return True
        if outcome.is_retryable:
            raise MembershipConflictError(
                "Rebalance failed, probably because another node is rebalancing",
                output=result.output,
            )
        raise UnexpectedControlPlaneError(
            f"Unexpected rebalance output (exit {result.returncode})",
            output=result.output,
        )

    def _expect(self, result: CommandResult, success_marker: str, command: str) -> None:
        outcome = classify_response(result.output, success_marker)
        if not outcome.is_success:
            raise UnexpectedControlPlaneError(
                f"{command} failed (exit {result.returncode})",
                output=result.output,
            )

    # ------------------------------------------------------------------
    # Compositions
    # ------------------------------------------------------------------

    def join_existing_cluster(self) -> None:
        """Wait for the cluster, then add and rebalance this node, in that order."""
        logger.pipeline_start("join_existing_cluster", node=self.node_address,
                              cluster=self.rally_point_address)
        try:
            logger.pipeline_step("wait_for_cluster_initialized")
            self.wait_for_cluster_initialized()
            logger.pipeline_step("add_node")
            self.add_node()
            logger.pipeline_step("rebalance")
            self.rebalance()
        except Exception:
            logger.pipeline_end("join_existing_cluster", False, node=self.node_address)
            raise
        logger.pipeline_end("join_existing_cluster", True, node=self.node_address)

    def add_rally_point_to_cluster(self) -> None:
        """
        Rally point branch: initialize the cluster, or join it when it
        already exists (e.g. this process is being re-run).
        """
        if self.get_status(self.rally_point_address).is_initialized:
            logger.info("Cluster already initialized; rally point joins like any other node")
            self.join_existing_cluster()
        else:
            self.initialize_cluster()

    def bootstrap(self, is_rally_point: Optional[bool] = None) -> MembershipState:
        """
        Run the whole protocol for this node.

        Args:
            is_rally_point: Override the hostname comparison

        Returns:
            The final membership state of this node
        """
        if is_rally_point is None:
            is_rally_point = self.is_rally_point

        self.wait_for_node_process()
        if is_rally_point:
            logger.info(f"{self.node_hostname} is the rally point")
            self.add_rally_point_to_cluster()
        else:
            logger.info(f"{self.node_hostname} joins the cluster at {self.rally_point_hostname}")
            self.join_existing_cluster()

        state = self.get_membership_state()
        logger.notice(f"Bootstrap finished for {self.node_address}: {state.value}")
        return state


__all__ = [
    'ClusterManager',
    'REBALANCE_CONFLICT',
]

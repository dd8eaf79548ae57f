"""
Pytest configuration and shared fixtures for Couchbase Bootstrap tests.

This module provides an in-process stand-in for couchbase-cli that keeps
one shared cluster state, so several ClusterManagers can bootstrap against
it exactly as real nodes would against the rally point.
"""

import os
import shutil
import subprocess
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Set, Tuple

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from couchbase_bootstrap.config import ClusterConfig, MemoryQuota, parse_services
from couchbase_bootstrap.constants import Markers
from couchbase_bootstrap.control_plane import CouchbaseCli
from couchbase_bootstrap.distributed import ClusterManager, Instance
from couchbase_bootstrap.retry import RetryPolicies, RetryPolicy


# ===========================================================================
# Fake couchbase-cli
# ===========================================================================

class FakeCouchbaseCluster:
    """
    Shared cluster state answering couchbase-cli command lines.

    Use an instance as the ``runner`` of a CouchbaseCli. Members are keyed
    by ``host:port`` and map to their server-list membership column.
    """

    def __init__(self):
        self.members: Dict[str, str] = {}
        self.health: Dict[str, str] = {}  # address -> health column, default healthy
        self.running: Optional[Set[str]] = None  # None: every host answers
        self.rebalance_conflicts = 0
        self.forced: Dict[str, Tuple[int, str]] = {}
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    # ------------------------------------------------------------------

    def __call__(self, command, **kwargs) -> subprocess.CompletedProcess:
        subcommand = command[1]
        args = {}
        for arg in command[2:]:
            name, _, value = arg.partition('=')
            args[name] = value
        self.calls.append((subcommand, args))

        if subcommand in self.forced:
            returncode, output = self.forced.pop(subcommand)
        else:
            handler = getattr(self, '_' + subcommand.replace('-', '_'))
            returncode, output = handler(args)
        return subprocess.CompletedProcess(command, returncode, stdout=output, stderr='')

    def count(self, subcommand: str) -> int:
        return sum(1 for name, _ in self.calls if name == subcommand)

    def args_of(self, subcommand: str) -> List[Dict[str, str]]:
        return [args for name, args in self.calls if name == subcommand]

    def is_running(self, address: str) -> bool:
        host = address.rpartition(':')[0]
        return self.running is None or host in self.running

    def activate_all(self) -> None:
        for address in self.members:
            self.members[address] = 'active'

    # ------------------------------------------------------------------

    def _server_list(self, args):
        address = args['--cluster']
        if not self.is_running(address):
            return 1, f"ERROR: Unable to connect to host at http://{address}\n"
        if address not in self.members:
            return 1, "ERROR: unknown pool\n"

        lines = [
            f"ns_1@{member.rpartition(':')[0]} {member} {self.health.get(member, 'healthy')} {membership}"
            for member, membership in self.members.items()
        ]
        return 0, '\n'.join(lines) + '\n'

    def _cluster_init(self, args):
        if self.members:
            return 1, "ERROR: Cluster is already initialized, use setting-cluster to change settings\n"
        self.members[f"{args['--cluster']}:{args['--cluster-port']}"] = 'active'
        return 0, f"{Markers.CLUSTER_INITIALIZED}\n"

    def _server_add(self, args):
        if args['--cluster'] not in self.members:
            return 1, "ERROR: unknown pool\n"
        node = args['--server-add']
        if node in self.members:
            return 1, "ERROR: Prepare join failed. Node is already part of cluster.\n"
        self.members[node] = 'inactiveAdded'
        return 0, f"{Markers.SERVER_ADDED}\n"

    def _rebalance(self, args):
        if self.rebalance_conflicts > 0:
            self.rebalance_conflicts -= 1
            return 1, f"ERROR: {Markers.REBALANCE_RETRY}\n"
        self.activate_all()
        return 0, f"{Markers.REBALANCE_COMPLETE}\n"


class SleepRecorder:
    """Records requested sleeps instead of sleeping; optionally runs a hook."""

    def __init__(self, on_sleep: Optional[Callable[[int], None]] = None):
        self.calls: List[float] = []
        self.on_sleep = on_sleep

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.calls))


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="couchbase_bootstrap_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


# ===========================================================================
# Cluster Fixtures
# ===========================================================================

@pytest.fixture
def fake_cluster() -> FakeCouchbaseCluster:
    """Provide an empty, uninitialized fake cluster."""
    return FakeCouchbaseCluster()


@pytest.fixture
def fake_cli(fake_cluster: FakeCouchbaseCluster) -> CouchbaseCli:
    """Provide a CouchbaseCli wired to the fake cluster."""
    return CouchbaseCli('/opt/couchbase/bin/couchbase-cli', timeout=10, runner=fake_cluster)


@pytest.fixture
def cluster_config() -> ClusterConfig:
    """Provide a data/index/query cluster configuration with manual quotas."""
    return ClusterConfig(
        name='test-cluster',
        admin_username='admin',
        admin_password='secret',
        services=parse_services('data,index,query'),
        memory=MemoryQuota(data_mb=1024, index_mb=512),
    )


@pytest.fixture
def fast_policies() -> RetryPolicies:
    """Provide small retry budgets so exhaustion tests stay short."""
    return RetryPolicies(
        process_start=RetryPolicy(3, 5.0),
        cluster_init=RetryPolicy(3, 5.0),
        rebalance=RetryPolicy(5, 30.0),
    )


@pytest.fixture
def make_manager(fake_cli, cluster_config, fast_policies):
    """Factory for ClusterManagers that share the fake cluster."""
    def factory(node_hostname: str, rally_point_hostname: str = 'node-1',
                sleep: Optional[Callable[[float], None]] = None,
                policies: Optional[RetryPolicies] = None) -> ClusterManager:
        return ClusterManager(
            fake_cli,
            cluster_config,
            node_hostname=node_hostname,
            rally_point_hostname=rally_point_hostname,
            policies=policies or fast_policies,
            sleep=sleep or SleepRecorder(),
        )
    return factory


# ===========================================================================
# Fleet Fixtures
# ===========================================================================

BASE_LAUNCH_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_instance(instance_id: str, offset_seconds: int, hostname: Optional[str] = None) -> Instance:
    """Create an Instance launched ``offset_seconds`` after a fixed base time."""
    return Instance(
        instance_id=instance_id,
        launch_time=BASE_LAUNCH_TIME + timedelta(seconds=offset_seconds),
        hostname=hostname or f"{instance_id}.internal",
    )


@pytest.fixture
def three_instances() -> List[Instance]:
    """Provide three instances launched a few seconds apart."""
    return [
        make_instance('i-ccc', 20, 'node-3'),
        make_instance('i-aaa', 0, 'node-1'),
        make_instance('i-bbb', 10, 'node-2'),
    ]


# ===========================================================================
# Markers Registration
# ===========================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Multi-node bootstrap scenarios")

"""
Centralized Constants Module for Couchbase Bootstrap.

This module consolidates the magic values used throughout the bootstrap
tool: control-plane success markers, retry bounds, default ports and
filesystem paths.

The control-plane markers form a text protocol with ``couchbase-cli``.
They are matched as literal substrings and must not be reworded.

Usage:
    from couchbase_bootstrap.constants import Markers, Timeouts, DefaultPorts

    subprocess.run(cmd, timeout=Timeouts.COMMAND_DEFAULT)
    if Markers.SERVER_ADDED in output:
        ...
"""

import os
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

ENV_PREFIX = "COUCHBASE_BOOTSTRAP_"


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDE UTILITIES
# =============================================================================

T = TypeVar('T')


def _env_override(
    env_var: str,
    default: T,
    converter: Callable[[str], T] = str,
    validator: Optional[Callable[[T], bool]] = None,
    min_value: Optional[T] = None,
    max_value: Optional[T] = None,
) -> T:
    """Get a configuration value with environment variable override.

    Invalid or out-of-range values are logged and replaced by the default,
    so a typo in the environment never produces an unbounded retry loop.

    Args:
        env_var: Environment variable name (will be prefixed with COUCHBASE_BOOTSTRAP_)
        default: Default value if env var not set
        converter: Function to convert string to target type
        validator: Optional validation function
        min_value: Optional minimum allowed value
        max_value: Optional maximum allowed value

    Returns:
        Configured value (from env var if valid, otherwise default)
    """
    full_env_var = f"{ENV_PREFIX}{env_var}"
    env_value = os.environ.get(full_env_var)

    if env_value is None:
        return default

    try:
        converted = converter(env_value)

        if min_value is not None and converted < min_value:
            logger.warning(
                f"{full_env_var}={env_value} below minimum {min_value}, using default"
            )
            return default
        if max_value is not None and converted > max_value:
            logger.warning(
                f"{full_env_var}={env_value} above maximum {max_value}, using default"
            )
            return default

        if validator is not None and not validator(converted):
            logger.warning(
                f"{full_env_var}={env_value} failed validation, using default"
            )
            return default

        logger.info(f"Using {full_env_var}={converted} (override)")
        return converted

    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid value for {full_env_var}: {e}, using default")
        return default


# =============================================================================
# CONTROL-PLANE TEXT PROTOCOL
# =============================================================================

@dataclass(frozen=True)
class Markers:
    """
    Literal substrings printed by ``couchbase-cli``.

    Success and failure of every control-plane command is decided by these
    markers, so they are reproduced byte for byte.
    """
    CLUSTER_INITIALIZED: str = "SUCCESS: Cluster initialized"
    SERVER_ADDED: str = "SUCCESS: Server added"
    REBALANCE_COMPLETE: str = "SUCCESS: Rebalance complete"
    REBALANCE_RETRY: str = "Rebalance failed. See logs for detailed reason. You can try again."

    # server-list output
    UNKNOWN_POOL: str = "unknown pool"
    HEALTHY_ACTIVE: str = "healthy active"

    # Connection failures reported by couchbase-cli itself
    CONNECTION_FAILURES: Tuple[str, ...] = (
        "Unable to connect",
        "Connection refused",
    )


# =============================================================================
# TIMEOUT CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Timeouts:
    """Centralized timeout values in seconds."""
    COMMAND_DEFAULT: float = 60.0       # server-list, server-add, cluster-init
    REBALANCE: float = 3600.0           # rebalance blocks until data has moved
    SERVICE_START: float = 120.0        # systemctl enable/start
    DIRECTORY_QUERY: float = 30.0       # aws CLI calls
    METADATA: float = 5.0               # EC2 instance metadata endpoint


# =============================================================================
# RETRY CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class RetryDefaults:
    """
    Bounds for the three polling sites.

    Waiting on a node process or on the cluster uses a long bound with a
    moderate interval. Rebalance conflicts resolve as soon as the competing
    peer finishes, so they get a short bound with a longer interval.
    """
    PROCESS_START_ATTEMPTS: int = 200
    PROCESS_START_INTERVAL: float = 5.0

    CLUSTER_INIT_ATTEMPTS: int = 200
    CLUSTER_INIT_INTERVAL: float = 5.0

    REBALANCE_ATTEMPTS: int = 5
    REBALANCE_INTERVAL: float = 30.0


# =============================================================================
# NETWORK CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class DefaultPorts:
    """Default Couchbase Server ports."""
    REST: int = 8091
    CAPI: int = 8092
    QUERY: int = 8093
    FTS: int = 8094
    MEMCACHED: int = 11210
    MEMCACHED_SSL: int = 11207
    SSL_REST: int = 18091
    SSL_CAPI: int = 18092
    SSL_QUERY: int = 18093
    SSL_FTS: int = 18094

    MIN_PORT: int = 1
    MAX_PORT: int = 65535


# =============================================================================
# PATH CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Paths:
    """Filesystem locations of a standard Couchbase Server install."""
    COUCHBASE_BASE: str = "/opt/couchbase"
    COUCHBASE_CLI: str = f"{COUCHBASE_BASE}/bin/couchbase-cli"
    STATIC_CONFIG: str = f"{COUCHBASE_BASE}/etc/couchbase/static_config"
    CAPI_INI: str = f"{COUCHBASE_BASE}/etc/couchdb/default.d/capi.ini"

    AWS_CLI: str = "aws"
    SYSTEMCTL: str = "systemctl"
    METADATA_URL: str = "http://169.254.169.254/latest/meta-data"


# =============================================================================
# CLUSTER DEFAULTS
# =============================================================================

@dataclass(frozen=True)
class Defaults:
    """Defaults applied when the command line leaves a value unset."""
    CLUSTER_NAME: str = "couchbase-cluster"
    SERVICES: str = "data,index,query,fts"
    INDEX_STORAGE_SETTING: str = "default"
    INDEX_STORAGE_SETTINGS: Tuple[str, ...] = ("default", "memopt")
    SERVICE_NAME: str = "couchbase-server"


# =============================================================================
# RUNTIME OVERRIDES
# =============================================================================

class RuntimeConfig:
    """
    Runtime configuration that can be overridden via environment variables.

    Values are read at call time so that a process started with a different
    environment picks them up without re-importing this module.
    """
    @staticmethod
    def get_process_start_attempts() -> int:
        return _env_override(
            "PROCESS_START_ATTEMPTS", RetryDefaults.PROCESS_START_ATTEMPTS, int,
            min_value=1, max_value=10000,
        )

    @staticmethod
    def get_process_start_interval() -> float:
        return _env_override(
            "PROCESS_START_INTERVAL", RetryDefaults.PROCESS_START_INTERVAL, float,
            min_value=0.0, max_value=600.0,
        )

    @staticmethod
    def get_cluster_init_attempts() -> int:
        return _env_override(
            "CLUSTER_INIT_ATTEMPTS", RetryDefaults.CLUSTER_INIT_ATTEMPTS, int,
            min_value=1, max_value=10000,
        )

    @staticmethod
    def get_cluster_init_interval() -> float:
        return _env_override(
            "CLUSTER_INIT_INTERVAL", RetryDefaults.CLUSTER_INIT_INTERVAL, float,
            min_value=0.0, max_value=600.0,
        )

    @staticmethod
    def get_rebalance_attempts() -> int:
        return _env_override(
            "REBALANCE_ATTEMPTS", RetryDefaults.REBALANCE_ATTEMPTS, int,
            min_value=1, max_value=100,
        )

    @staticmethod
    def get_rebalance_interval() -> float:
        return _env_override(
            "REBALANCE_INTERVAL", RetryDefaults.REBALANCE_INTERVAL, float,
            min_value=0.0, max_value=3600.0,
        )

    @staticmethod
    def get_command_timeout() -> float:
        """Get default control-plane command timeout."""
        return _env_override(
            "COMMAND_TIMEOUT", Timeouts.COMMAND_DEFAULT, float,
            min_value=1.0, max_value=3600.0,
        )


__all__ = [
    'ENV_PREFIX',
    'Markers',
    'Timeouts',
    'RetryDefaults',
    'DefaultPorts',
    'Paths',
    'Defaults',
    'RuntimeConfig',
]

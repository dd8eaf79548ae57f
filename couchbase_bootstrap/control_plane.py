"""
Control-Plane Client - runs couchbase-cli and classifies its output.

couchbase-cli reports success and failure as free text. classify_response
is the single place where that text is turned into a tagged outcome, so
the literal markers in constants.Markers never leak into the state machine.
"""

import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .constants import Paths, RuntimeConfig, Timeouts
from .exceptions import ControlPlaneUnavailableError
from .logging_config import get_logger

logger = get_logger(__name__)

REDACTED = "*****"


@dataclass(frozen=True)
class CommandResult:
    """Exit status and combined stdout/stderr of one couchbase-cli call."""
    command: Tuple[str, ...]
    returncode: int
    output: str

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


class OutcomeKind(Enum):
    """Classification of a control-plane response."""
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class CommandOutcome:
    """Tagged result: Success | Retryable(reason) | Fatal."""
    kind: OutcomeKind
    output: str
    reason: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_retryable(self) -> bool:
        return self.kind == OutcomeKind.RETRYABLE


def classify_response(
    output: str,
    success_marker: str,
    retryable_markers: Optional[Dict[str, str]] = None,
) -> CommandOutcome:
    """
    Classify command output by literal substring markers.

    Args:
        output: Raw command output
        success_marker: Substring that means the command succeeded
        retryable_markers: Map of substring -> retry reason

    Returns:
        SUCCESS if the success marker is present, RETRYABLE with the reason
        of the first matching retryable marker, FATAL otherwise
    """
    if success_marker in output:
        return CommandOutcome(OutcomeKind.SUCCESS, output)

    for marker, reason in (retryable_markers or {}).items():
        if marker in output:
            return CommandOutcome(OutcomeKind.RETRYABLE, output, reason)

    return CommandOutcome(OutcomeKind.FATAL, output)


def redact(command: Sequence[str]) -> List[str]:
    """Replace password values in a command line for logging."""
    redacted = []
    for arg in command:
        name, sep, _ = arg.partition('=')
        if sep and ('password' in name or name == '--pass'):
            redacted.append(f"{name}={REDACTED}")
        else:
            redacted.append(arg)
    return redacted


class CouchbaseCli:
    """
    Thin wrapper around the couchbase-cli binary.

    Each method maps to one control-plane command and returns a
    CommandResult; interpreting the output is left to the caller. Argument
    names are those couchbase-cli expects and must not be changed.
    """

    def __init__(
        self,
        cli_path: str = Paths.COUCHBASE_CLI,
        timeout: Optional[float] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.cli_path = cli_path
        self.timeout = timeout if timeout is not None else RuntimeConfig.get_command_timeout()
        self._runner = runner

    def run(self, subcommand: str, args: Sequence[str],
            timeout: Optional[float] = None) -> CommandResult:
        """
        Run ``couchbase-cli <subcommand> <args...>``.

        A non-zero exit status is returned, not raised: several commands
        are expected to fail while the cluster is still forming.

        Raises:
            ControlPlaneUnavailableError: the binary could not be executed
                or did not finish within the timeout
        """
        command = [self.cli_path, subcommand, *args]
        printable = ' '.join(redact(command))
        logger.verbose(f"Running: {printable}")

        try:
            completed = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ControlPlaneUnavailableError(
                f"{subcommand} timed out after {e.timeout}s"
            ) from e
        except OSError as e:
            raise ControlPlaneUnavailableError(
                f"Could not execute {self.cli_path}: {e}"
            ) from e

        output = (completed.stdout or '') + (completed.stderr or '')
        logger.trace(f"{subcommand} exited {completed.returncode}: {output.strip()}")
        return CommandResult(tuple(command), completed.returncode, output)

    def server_list(self, cluster: str, username: str, password: str) -> CommandResult:
        """List the nodes of the cluster reachable at ``host:port``."""
        return self.run('server-list', [
            f'--cluster={cluster}',
            f'--username={username}',
            f'--password={password}',
        ])

    def cluster_init(
        self,
        host: str,
        port: int,
        name: str,
        username: str,
        password: str,
        index_storage_setting: str,
        services: str,
        data_ramsize: Optional[int] = None,
        index_ramsize: Optional[int] = None,
        fts_ramsize: Optional[int] = None,
    ) -> CommandResult:
        """Create a new cluster on ``host``. Quotas are passed only when set."""
        args = [
            f'--cluster={host}',
            f'--cluster-name={name}',
            f'--cluster-port={port}',
            f'--cluster-username={username}',
            f'--cluster-password={password}',
            f'--index-storage-setting={index_storage_setting}',
            f'--services={services}',
        ]
        if data_ramsize is not None:
            args.append(f'--cluster-ramsize={data_ramsize}')
        if index_ramsize is not None:
            args.append(f'--cluster-index-ramsize={index_ramsize}')
        if fts_ramsize is not None:
            args.append(f'--cluster-fts-ramsize={fts_ramsize}')
        return self.run('cluster-init', args)

    def server_add(
        self,
        cluster: str,
        username: str,
        password: str,
        node: str,
        index_storage_setting: str,
        services: str,
    ) -> CommandResult:
        """Add ``node`` (``host:port``) to the cluster at ``cluster``."""
        return self.run('server-add', [
            f'--cluster={cluster}',
            f'--user={username}',
            f'--pass={password}',
            f'--server-add={node}',
            f'--server-add-username={username}',
            f'--server-add-password={password}',
            f'--index-storage-setting={index_storage_setting}',
            f'--services={services}',
        ])

    def rebalance(self, cluster: str, username: str, password: str) -> CommandResult:
        """Rebalance the cluster; blocks until the rebalance finishes."""
        return self.run('rebalance', [
            f'--cluster={cluster}',
            f'--username={username}',
            f'--password={password}',
            '--no-progress-bar',
        ], timeout=Timeouts.REBALANCE)


__all__ = [
    'CommandResult',
    'OutcomeKind',
    'CommandOutcome',
    'classify_response',
    'redact',
    'CouchbaseCli',
]

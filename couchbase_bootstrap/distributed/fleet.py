"""
Fleet Directory Backends - pluggable views of fleet membership.

The directory is an external, eventually-consistent registry of instances
with stable identifiers and launch times. This module only reads it:
an in-memory list, a JSON/YAML file (for local and Docker testing), or an
AWS Auto Scaling Group queried through the ``aws`` CLI.
"""

import json
import subprocess
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import yaml

from ..constants import Paths, Timeouts
from ..exceptions import DirectoryLookupError
from ..logging_config import get_logger

logger = get_logger(__name__)

# EC2 states in which an instance can still become a cluster member
LIVE_INSTANCE_STATES = ('pending', 'running')


@dataclass(frozen=True)
class Instance:
    """Snapshot of one fleet member. Not owned by this tool."""
    instance_id: str
    launch_time: datetime
    hostname: str


def parse_launch_time(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise DirectoryLookupError(f"Malformed launch time: {value!r}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def instance_from_dict(data: Dict[str, Any]) -> Instance:
    """Build an Instance from a directory record."""
    if not isinstance(data, dict):
        raise DirectoryLookupError(f"Malformed instance record: {data!r}")
    try:
        instance_id = data['instance_id']
        launch_time = data['launch_time']
    except KeyError as e:
        raise DirectoryLookupError(f"Instance record is missing {e}: {data!r}") from e

    return Instance(
        instance_id=str(instance_id),
        launch_time=parse_launch_time(launch_time),
        hostname=str(data.get('hostname') or ''),
    )


class FleetDirectory(ABC):
    """
    Abstract fleet membership interface.

    Implementations can use a static list, a file, or a cloud provider API.
    """

    @abstractmethod
    def get_instances(self, group: str) -> List[Instance]:
        """
        List the instances of one fleet group.

        Args:
            group: Fleet group name (e.g. the Auto Scaling Group name)

        Returns:
            The group's instances, in no particular order

        Raises:
            DirectoryLookupError: the lookup failed or returned malformed data
        """
        pass

    def find_instance(self, group: str, instance_id: str) -> Instance:
        """Look up one instance of ``group`` by id."""
        for instance in self.get_instances(group):
            if instance.instance_id == instance_id:
                return instance
        raise DirectoryLookupError(f"Instance {instance_id} is not a member of group {group}")


class StaticFleetDirectory(FleetDirectory):
    """Fixed membership, mainly for tests and single-node setups."""

    def __init__(self, instances: Iterable[Instance], group: Optional[str] = None):
        self._instances = list(instances)
        self._group = group

    def get_instances(self, group: str) -> List[Instance]:
        if self._group is not None and group != self._group:
            raise DirectoryLookupError(f"Unknown fleet group: {group}")
        return list(self._instances)


class FileFleetDirectory(FleetDirectory):
    """
    File-based directory for development and testing.

    The file is re-read on every lookup so that it can be edited while
    nodes are starting up. Expected layout (JSON or YAML)::

        groups:
          couchbase-asg:
            - {instance_id: i-1, launch_time: "2024-01-01T00:00:00Z", hostname: node-1}
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        try:
            content = self.path.read_text()
        except OSError as e:
            raise DirectoryLookupError(f"Cannot read fleet file {self.path}: {e}") from e

        try:
            if self.path.suffix.lower() == '.json':
                data = json.loads(content)
            else:
                data = yaml.safe_load(content)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise DirectoryLookupError(f"Malformed fleet file {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get('groups'), dict):
            raise DirectoryLookupError(f"Fleet file {self.path} has no 'groups' mapping")
        return data

    def get_instances(self, group: str) -> List[Instance]:
        records = self._load()['groups'].get(group)
        if not isinstance(records, list):
            raise DirectoryLookupError(f"Fleet group {group} not found in {self.path}")
        return [instance_from_dict(record) for record in records]


def instance_metadata(
    path: str,
    base_url: str = Paths.METADATA_URL,
    timeout: float = Timeouts.METADATA,
    opener: Callable[..., Any] = urllib.request.urlopen,
) -> str:
    """
    Read one value from the EC2 instance metadata service.

    Args:
        path: Metadata path, e.g. 'instance-id' or 'placement/region'
    """
    url = f"{base_url}/{path}"
    try:
        with opener(url, timeout=timeout) as response:
            value = response.read().decode('utf-8').strip()
    except (urllib.error.URLError, OSError) as e:
        raise DirectoryLookupError(f"Instance metadata lookup failed for {url}: {e}") from e

    if not value:
        raise DirectoryLookupError(f"Instance metadata {path} is empty")
    return value


class AwsCliFleetDirectory(FleetDirectory):
    """
    Auto Scaling Group membership via the ``aws`` CLI.

    The hostname of each instance is its PublicDnsName when
    ``use_public_hostname`` is set and its PrivateDnsName otherwise.

    NOTE: Requires the aws CLI to be installed and credentials (usually an
    instance profile) that allow autoscaling:Describe* and ec2:Describe*.
    """

    def __init__(
        self,
        region: str,
        use_public_hostname: bool = False,
        aws_cli: str = Paths.AWS_CLI,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        if not region:
            raise DirectoryLookupError("AWS region is required")
        self.region = region
        self.use_public_hostname = use_public_hostname
        self.aws_cli = aws_cli
        self._runner = runner

    @classmethod
    def for_current_region(cls, use_public_hostname: bool = False, **kwargs) -> 'AwsCliFleetDirectory':
        """Create a directory for the region this EC2 instance runs in."""
        region = instance_metadata('placement/region')
        return cls(region, use_public_hostname=use_public_hostname, **kwargs)

    def _aws(self, args: Sequence[str]) -> Dict[str, Any]:
        command = [self.aws_cli, *args, '--region', self.region, '--output', 'json']
        logger.verbose(f"Running: {' '.join(command)}")
        try:
            result = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=Timeouts.DIRECTORY_QUERY,
            )
        except subprocess.TimeoutExpired as e:
            raise DirectoryLookupError(f"aws {args[0]} timed out") from e
        except OSError as e:
            raise DirectoryLookupError(f"Could not execute {self.aws_cli}: {e}") from e

        if result.returncode != 0:
            raise DirectoryLookupError(
                f"aws {' '.join(args[:2])} failed: {result.stderr.strip()}",
                output=result.stderr,
            )
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise DirectoryLookupError(
                f"aws {' '.join(args[:2])} returned malformed JSON", output=result.stdout
            ) from e

    def _group_instance_ids(self, group: str) -> List[str]:
        data = self._aws([
            'autoscaling', 'describe-auto-scaling-groups',
            '--auto-scaling-group-names', group,
        ])
        groups = data.get('AutoScalingGroups') or []
        if not groups:
            raise DirectoryLookupError(f"Auto Scaling Group {group} not found in {self.region}")

        ids = [i.get('InstanceId') for i in groups[0].get('Instances') or []]
        ids = [instance_id for instance_id in ids if instance_id]
        if not ids:
            raise DirectoryLookupError(f"Auto Scaling Group {group} has no instances")
        return ids

    def _hostname(self, record: Dict[str, Any]) -> str:
        if self.use_public_hostname:
            return record.get('PublicDnsName') or ''
        return record.get('PrivateDnsName') or ''

    def get_instances(self, group: str) -> List[Instance]:
        ids = self._group_instance_ids(group)
        data = self._aws([
            'ec2', 'describe-instances', '--instance-ids', *ids,
            '--filters', f"Name=instance-state-name,Values={','.join(LIVE_INSTANCE_STATES)}",
        ])

        instances = []
        for reservation in data.get('Reservations') or []:
            for record in reservation.get('Instances') or []:
                state = (record.get('State') or {}).get('Name')
                if state is not None and state not in LIVE_INSTANCE_STATES:
                    logger.verbose(f"Skipping {record.get('InstanceId')} in state {state}")
                    continue
                instances.append(Instance(
                    instance_id=record.get('InstanceId') or '',
                    launch_time=parse_launch_time(record.get('LaunchTime')),
                    hostname=self._hostname(record),
                ))

        logger.verbose(f"Found {len(instances)} instance(s) in {group}")
        return instances


__all__ = [
    'Instance',
    'parse_launch_time',
    'instance_from_dict',
    'FleetDirectory',
    'StaticFleetDirectory',
    'FileFleetDirectory',
    'AwsCliFleetDirectory',
    'instance_metadata',
]

"""
Rally Point Selector - deterministic election of the cluster initializer.

Every peer reads the same (eventually consistent) fleet directory and
applies the same ordering, so all peers agree on the rally point without
talking to each other. When the rally point is terminated, the survivors
converge on the next-oldest instance at their next evaluation.
"""

from typing import Iterable, Optional

from .fleet import FleetDirectory, Instance
from ..exceptions import DirectoryLookupError
from ..logging_config import get_logger

logger = get_logger(__name__)


def _election_key(instance: Instance):
    return (instance.launch_time, instance.instance_id)


def select_rally_point(instances: Iterable[Instance]) -> Instance:
    """
    Pick the instance that initializes the cluster.

    Instances are ordered by launch time, oldest first, with the instance
    id as tie-break. The result does not depend on the input order.

    Raises:
        DirectoryLookupError: no instances, or an instance without an id,
            launch time or hostname
    """
    candidates = list(instances)
    if not candidates:
        raise DirectoryLookupError("Fleet directory returned no instances")

    for instance in candidates:
        if not instance.instance_id or instance.launch_time is None or not instance.hostname:
            raise DirectoryLookupError(f"Malformed instance in fleet directory: {instance!r}")

    return min(candidates, key=_election_key)


class RallyPointSelector:
    """Elects the rally point of a fleet group from a FleetDirectory."""

    def __init__(self, directory: FleetDirectory):
        self.directory = directory

    def get_rally_point(self, group: str) -> Instance:
        rally_point = select_rally_point(self.directory.get_instances(group))
        logger.info(
            f"Rally point for {group}: {rally_point.instance_id} ({rally_point.hostname})"
        )
        return rally_point

    def is_rally_point(self, hostname: str, group: str,
                       rally_point: Optional[Instance] = None) -> bool:
        """Whether the node with ``hostname`` is the rally point of ``group``."""
        if rally_point is None:
            rally_point = self.get_rally_point(group)
        return rally_point.hostname == hostname


__all__ = [
    'select_rally_point',
    'RallyPointSelector',
]

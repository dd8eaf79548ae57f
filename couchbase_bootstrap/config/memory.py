"""
Memory Allocation Planner - per-service memory quotas.

Splits the memory of a node between the data, index and search (fts)
services using a fixed percentage table. All arithmetic is integer floor
division, so quotas are whole megabytes. Services that are not selected get
no quota at all (None), never zero.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import psutil

from .services import MEMORY_SERVICES, Service
from ..exceptions import ValidationError
from ..logging_config import get_logger

logger = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024

# Percentages of total memory as (data, index, search); None = no quota.
# Keyed by the memory-bearing subset of the selected services.
QUOTA_TABLE: Dict[FrozenSet[Service], Tuple[Optional[int], Optional[int], Optional[int]]] = {
    frozenset({Service.DATA, Service.INDEX, Service.SEARCH}): (40, 20, 15),
    frozenset({Service.DATA, Service.INDEX}): (50, 25, None),
    frozenset({Service.DATA, Service.SEARCH}): (50, None, 25),
    frozenset({Service.DATA}): (75, None, None),
    frozenset({Service.INDEX}): (None, 75, None),
    frozenset({Service.SEARCH}): (None, None, 75),
}


@dataclass(frozen=True)
class MemoryQuota:
    """Memory quota per service in MB. None means the service has no quota."""
    data_mb: Optional[int] = None
    index_mb: Optional[int] = None
    search_mb: Optional[int] = None

    def for_service(self, service: Service) -> Optional[int]:
        return {
            Service.DATA: self.data_mb,
            Service.INDEX: self.index_mb,
            Service.SEARCH: self.search_mb,
        }.get(service)

    def is_empty(self) -> bool:
        return self.data_mb is None and self.index_mb is None and self.search_mb is None

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {
            'data_mb': self.data_mb,
            'index_mb': self.index_mb,
            'search_mb': self.search_mb,
        }


def _percent_of(total_mb: int, percent: Optional[int]) -> Optional[int]:
    if percent is None:
        return None
    return total_mb * percent // 100


def plan_memory(total_mb: int, services: Iterable[Service]) -> MemoryQuota:
    """
    Compute per-service quotas from the percentage table.

    Args:
        total_mb: Memory available to Couchbase, in MB
        services: Selected services; query has no quota and is ignored

    Returns:
        MemoryQuota with a value for each selected memory-bearing service

    Raises:
        ValidationError: negative memory, or a service combination the
            table does not cover (quotas must then be given manually)
    """
    if total_mb < 0:
        raise ValidationError(f"Total memory must be non-negative, got {total_mb} MB")

    memory_services = frozenset(services) & MEMORY_SERVICES
    if not memory_services:
        return MemoryQuota()

    percentages = QUOTA_TABLE.get(memory_services)
    if percentages is None:
        names = ",".join(sorted(s.value for s in memory_services))
        raise ValidationError(
            f"No automatic memory split for services '{names}'; "
            f"specify the memory quota of each service manually"
        )

    data_pct, index_pct, search_pct = percentages
    return MemoryQuota(
        data_mb=_percent_of(total_mb, data_pct),
        index_mb=_percent_of(total_mb, index_pct),
        search_mb=_percent_of(total_mb, search_pct),
    )


def total_memory_mb() -> int:
    """Physical memory of this host in MB."""
    return psutil.virtual_memory().total // BYTES_PER_MB


def resolve_memory_quota(
    services: Iterable[Service],
    data_mb: Optional[int] = None,
    index_mb: Optional[int] = None,
    search_mb: Optional[int] = None,
    total_mb: Optional[int] = None,
) -> MemoryQuota:
    """
    Resolve quotas from manual settings or the planner, never a mix of both.

    Either every selected memory-bearing service has an explicit quota, or
    none do and the planner computes all of them from ``total_mb`` (read
    from the host when not given).
    """
    selected = frozenset(services)
    manual = {
        Service.DATA: data_mb,
        Service.INDEX: index_mb,
        Service.SEARCH: search_mb,
    }

    for service, value in manual.items():
        if value is None:
            continue
        if service not in selected:
            raise ValidationError(
                f"Memory quota given for service '{service.value}' which is not selected"
            )
        if value <= 0:
            raise ValidationError(
                f"Memory quota for service '{service.value}' must be positive, got {value}"
            )

    wanted = selected & MEMORY_SERVICES
    given = {service for service, value in manual.items() if value is not None}

    if given:
        missing = wanted - given
        if missing:
            names = ",".join(sorted(s.value for s in missing))
            raise ValidationError(
                f"Memory quotas must be given for all services or none; missing: {names}"
            )
        quota = MemoryQuota(data_mb=data_mb, index_mb=index_mb, search_mb=search_mb)
        logger.info(f"Using manual memory quotas: {quota.to_dict()}")
        return quota

    if total_mb is None:
        total_mb = total_memory_mb()

    quota = plan_memory(total_mb, selected)
    logger.info(f"Computed memory quotas from {total_mb} MB: {quota.to_dict()}")
    return quota


__all__ = [
    'MemoryQuota',
    'QUOTA_TABLE',
    'plan_memory',
    'total_memory_mb',
    'resolve_memory_quota',
]

"""
Couchbase services a node can run.

The command-line and control-plane spelling of the search service is
``fts``; ``search`` is accepted as an alias on input.
"""

from enum import Enum
from typing import FrozenSet, Iterable

from ..exceptions import ValidationError


class Service(Enum):
    """A Couchbase Server service."""
    DATA = "data"
    INDEX = "index"
    QUERY = "query"
    SEARCH = "fts"

    @classmethod
    def parse(cls, name: str) -> 'Service':
        """Parse a single service name."""
        key = name.strip().lower()
        if key == "search":
            return cls.SEARCH
        for service in cls:
            if service.value == key:
                return service
        valid = ", ".join(s.value for s in SERVICE_ORDER)
        raise ValidationError(f"Unknown service '{name}' (expected one of: {valid})")


# Canonical order used when rendering --services=<csv>
SERVICE_ORDER = (Service.DATA, Service.INDEX, Service.QUERY, Service.SEARCH)

# Services that receive a memory quota
MEMORY_SERVICES = frozenset({Service.DATA, Service.INDEX, Service.SEARCH})


def parse_services(value) -> FrozenSet[Service]:
    """Parse a comma-separated string (or an iterable of names) into a service set."""
    if isinstance(value, str):
        names = [part for part in value.split(",") if part.strip()]
    else:
        names = [str(part) for part in value]

    services = frozenset(Service.parse(name) for name in names)
    if not services:
        raise ValidationError("At least one service must be selected")
    return services


def services_csv(services: Iterable[Service]) -> str:
    """Render a service set in canonical order, e.g. 'data,index,query,fts'."""
    selected = set(services)
    return ",".join(s.value for s in SERVICE_ORDER if s in selected)


__all__ = [
    'Service',
    'SERVICE_ORDER',
    'MEMORY_SERVICES',
    'parse_services',
    'services_csv',
]

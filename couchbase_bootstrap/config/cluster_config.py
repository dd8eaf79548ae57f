"""
Cluster Configuration - the immutable settings of one bootstrap run.

A ClusterConfig is built once at startup from command-line input, an
optional settings file and computed defaults, and is then passed by
reference to every component. It is never mutated.
"""

from dataclasses import dataclass, field, fields
from typing import Dict, FrozenSet, Optional

from .memory import MemoryQuota
from .services import MEMORY_SERVICES, Service, services_csv
from ..constants import DefaultPorts, Defaults
from ..exceptions import ValidationError


@dataclass(frozen=True)
class NetworkPorts:
    """Ports used by a Couchbase node."""
    rest: int = DefaultPorts.REST
    capi: int = DefaultPorts.CAPI
    query: int = DefaultPorts.QUERY
    fts: int = DefaultPorts.FTS
    memcached: int = DefaultPorts.MEMCACHED
    memcached_ssl: int = DefaultPorts.MEMCACHED_SSL
    ssl_rest: int = DefaultPorts.SSL_REST
    ssl_capi: int = DefaultPorts.SSL_CAPI
    ssl_query: int = DefaultPorts.SSL_QUERY
    ssl_fts: int = DefaultPorts.SSL_FTS

    def __post_init__(self):
        seen: Dict[int, str] = {}
        for f in fields(self):
            port = getattr(self, f.name)
            if not isinstance(port, int) or not (
                DefaultPorts.MIN_PORT <= port <= DefaultPorts.MAX_PORT
            ):
                raise ValidationError(f"Invalid {f.name} port: {port!r}")
            if port in seen:
                raise ValidationError(
                    f"Port {port} is used for both {seen[port]} and {f.name}"
                )
            seen[port] = f.name

    def static_config_entries(self) -> Dict[str, int]:
        """Ports keyed by their names in Couchbase's static_config file."""
        return {
            'rest_port': self.rest,
            'query_port': self.query,
            'ssl_query_port': self.ssl_query,
            'fts_http_port': self.fts,
            'fts_ssl_port': self.ssl_fts,
            'memcached_port': self.memcached,
            'memcached_ssl_port': self.memcached_ssl,
            'ssl_rest_port': self.ssl_rest,
        }


@dataclass(frozen=True)
class ClusterConfig:
    """Settings shared by every node of one cluster."""
    name: str
    admin_username: str
    admin_password: str = field(repr=False)
    services: FrozenSet[Service]
    memory: MemoryQuota
    index_storage_mode: str = Defaults.INDEX_STORAGE_SETTING
    ports: NetworkPorts = field(default_factory=NetworkPorts)

    def __post_init__(self):
        if not self.name:
            raise ValidationError("Cluster name must not be empty")
        if not self.admin_username:
            raise ValidationError("Cluster username is required")
        if not self.admin_password:
            raise ValidationError("Cluster password is required")
        if not self.services:
            raise ValidationError("At least one service must be selected")
        if self.index_storage_mode not in Defaults.INDEX_STORAGE_SETTINGS:
            valid = ", ".join(Defaults.INDEX_STORAGE_SETTINGS)
            raise ValidationError(
                f"Invalid index storage setting '{self.index_storage_mode}' "
                f"(expected one of: {valid})"
            )
        for service in MEMORY_SERVICES:
            if service not in self.services and self.memory.for_service(service) is not None:
                raise ValidationError(
                    f"Memory quota set for unselected service '{service.value}'"
                )

    @property
    def services_csv(self) -> str:
        return services_csv(self.services)

    def quota_for(self, service: Service) -> Optional[int]:
        """Quota of a selected service, None when unselected or without quota."""
        if service not in self.services:
            return None
        return self.memory.for_service(service)

    def to_dict(self) -> Dict:
        """Loggable view of the configuration (password redacted)."""
        return {
            'name': self.name,
            'admin_username': self.admin_username,
            'admin_password': '*****',
            'services': self.services_csv,
            'index_storage_mode': self.index_storage_mode,
            'memory': self.memory.to_dict(),
            'ports': {f.name: getattr(self.ports, f.name) for f in fields(self.ports)},
        }


__all__ = [
    'NetworkPorts',
    'ClusterConfig',
]

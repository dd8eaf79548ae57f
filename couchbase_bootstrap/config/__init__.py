"""
Configuration Module for Couchbase Bootstrap.

Provides:
- Service selection parsing
- Memory quota planning
- The immutable ClusterConfig and NetworkPorts values
- JSON/YAML settings file loading
"""

from .services import Service, SERVICE_ORDER, MEMORY_SERVICES, parse_services, services_csv
from .memory import MemoryQuota, plan_memory, resolve_memory_quota, total_memory_mb
from .cluster_config import ClusterConfig, NetworkPorts
from .loader import ConfigFormat, load_settings_file

__all__ = [
    'Service',
    'SERVICE_ORDER',
    'MEMORY_SERVICES',
    'parse_services',
    'services_csv',
    'MemoryQuota',
    'plan_memory',
    'resolve_memory_quota',
    'total_memory_mb',
    'ClusterConfig',
    'NetworkPorts',
    'ConfigFormat',
    'load_settings_file',
]

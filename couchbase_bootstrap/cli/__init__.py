"""
CLI Module for Couchbase Bootstrap

Provides the command-line entry point run on every node:
- run_cluster: Bootstrap this node into the cluster

Usage:
    python -m couchbase_bootstrap.cli.run_cluster --cluster-username admin ...
"""

from .run_cluster import BootstrapCLI, create_parser, main as run_cluster_main

__all__ = [
    'BootstrapCLI',
    'create_parser',
    'run_cluster_main',
]

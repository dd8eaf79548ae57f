#!/usr/bin/env python3
"""
run-couchbase-cluster - bootstrap this node into a Couchbase cluster

Configures the node's ports, starts Couchbase, elects the rally point from
the fleet directory and then either initializes the cluster (rally point)
or joins it (every other node). Safe to re-run: completed steps are
detected and skipped.

Usage:
    run-couchbase-cluster --cluster-username admin --cluster-password secret \\
        --asg-name couchbase-asg
    run-couchbase-cluster --cluster-username admin --cluster-password secret \\
        --rally-point-hostname 10.0.0.5 --node-hostname 10.0.0.6
    run-couchbase-cluster --config-file /etc/couchbase-bootstrap.yml

Environment:
    COUCHBASE_BOOTSTRAP_VERBOSE            Enable verbose logging
    COUCHBASE_BOOTSTRAP_LOG_FILE           Additional log file
    COUCHBASE_BOOTSTRAP_*_ATTEMPTS/_INTERVAL  Retry bounds
"""

import argparse
import socket
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from ..config import (
    ClusterConfig,
    NetworkPorts,
    load_settings_file,
    parse_services,
    resolve_memory_quota,
)
from ..constants import Defaults, Paths
from ..control_plane import CouchbaseCli
from ..distributed import (
    AwsCliFleetDirectory,
    ClusterManager,
    FileFleetDirectory,
    FleetDirectory,
    select_rally_point,
)
from ..distributed.fleet import instance_metadata
from ..exceptions import BootstrapError, ValidationError
from ..logging_config import configure_from_environment, get_logger
from ..service import configure_ports, start_service
from ..utils.error_handling import handle_error

logger = get_logger(__name__)

# (dest, NetworkPorts field, flag help)
PORT_OPTIONS = (
    ('rest_port', 'rest', 'REST API port'),
    ('capi_port', 'capi', 'CAPI (views) port'),
    ('query_port', 'query', 'Query service port'),
    ('fts_port', 'fts', 'Search service port'),
    ('memcached_port', 'memcached', 'Data service (memcached) port'),
    ('memcached_ssl_port', 'memcached_ssl', 'Data service SSL port'),
    ('ssl_rest_port', 'ssl_rest', 'REST API SSL port'),
    ('ssl_capi_port', 'ssl_capi', 'CAPI SSL port'),
    ('ssl_query_port', 'ssl_query', 'Query service SSL port'),
    ('ssl_fts_port', 'ssl_fts', 'Search service SSL port'),
)


class BootstrapArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on usage errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = BootstrapArgumentParser(
        prog='run-couchbase-cluster',
        description='Bootstrap this node into a Couchbase cluster',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  run-couchbase-cluster --cluster-username admin --cluster-password secret --asg-name couchbase-asg
  run-couchbase-cluster --cluster-username admin --cluster-password secret \\
      --rally-point-hostname 10.0.0.5 --node-hostname 10.0.0.6 --services data,query
  run-couchbase-cluster --config-file /etc/couchbase-bootstrap.yml --verbose
        """
    )

    cluster = parser.add_argument_group('cluster')
    cluster.add_argument('--cluster-username', metavar='USER',
                         help='Admin username (required)')
    cluster.add_argument('--cluster-password', metavar='PASSWORD',
                         help='Admin password (required)')
    cluster.add_argument('--cluster-name', metavar='NAME',
                         help='Cluster name (default: fleet group name)')
    cluster.add_argument('--services', metavar='CSV',
                         help=f'Services to run on this node (default: {Defaults.SERVICES})')
    cluster.add_argument('--index-storage-setting',
                         choices=Defaults.INDEX_STORAGE_SETTINGS,
                         help=f'Index storage mode (default: {Defaults.INDEX_STORAGE_SETTING})')

    memory = parser.add_argument_group(
        'memory', 'Give a quota for every selected service, or none to compute them'
    )
    memory.add_argument('--data-ramsize', type=int, metavar='MB', help='Data service quota')
    memory.add_argument('--index-ramsize', type=int, metavar='MB', help='Index service quota')
    memory.add_argument('--fts-ramsize', type=int, metavar='MB', help='Search service quota')

    fleet = parser.add_argument_group('fleet')
    fleet.add_argument('--node-hostname', metavar='HOST',
                       help='Hostname other nodes use to reach this node')
    fleet.add_argument('--rally-point-hostname', metavar='HOST',
                       help='Skip the election and use this rally point')
    fleet.add_argument('--asg-name', '--fleet-group', dest='asg_name', metavar='NAME',
                       help='Fleet group (Auto Scaling Group) this node belongs to')
    fleet.add_argument('--fleet-file', metavar='PATH',
                       help='Read fleet membership from a JSON/YAML file instead of AWS')
    fleet.add_argument('--aws-region', metavar='REGION',
                       help='AWS region (default: from instance metadata)')
    fleet.add_argument('--instance-id', metavar='ID',
                       help='This node\'s instance id (default: from instance metadata)')
    fleet.add_argument('--use-public-hostname', action='store_true', default=None,
                       help='Address instances by their public DNS names')

    ports = parser.add_argument_group('ports')
    for dest, _, help_text in PORT_OPTIONS:
        ports.add_argument(f"--{dest.replace('_', '-')}", dest=dest, type=int,
                           metavar='PORT', help=help_text)

    runtime = parser.add_argument_group('runtime')
    runtime.add_argument('--couchbase-cli', metavar='PATH',
                         help=f'Path to couchbase-cli (default: {Paths.COUCHBASE_CLI})')
    runtime.add_argument('--static-config', metavar='PATH',
                         help=f'Path to static_config (default: {Paths.STATIC_CONFIG})')
    runtime.add_argument('--capi-ini', metavar='PATH',
                         help=f'Path to capi.ini (default: {Paths.CAPI_INI})')
    runtime.add_argument('--skip-service-setup', action='store_true', default=None,
                         help='Do not patch ports or start the Couchbase service')
    runtime.add_argument('--config-file', metavar='PATH',
                         help='JSON/YAML file providing any of these options')

    logs = parser.add_argument_group('logging')
    logs.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    logs.add_argument('-t', '--trace', action='store_true',
                      help='Enable trace logging (raw command output)')
    logs.add_argument('--log-json', action='store_true', help='Output logs in JSON format')
    logs.add_argument('--log-file', metavar='PATH', help='Additional log file')

    return parser


class BootstrapCLI:
    """Resolves settings from arguments and a settings file, then runs the protocol."""

    def __init__(self, args: argparse.Namespace, settings: Optional[Dict[str, Any]] = None):
        self.args = args
        self.settings = settings or {}

    def setting(self, name: str, default: Any = None) -> Any:
        """Command-line value, else settings-file value, else ``default``."""
        value = getattr(self.args, name, None)
        if value is None:
            value = self.settings.get(name)
        return default if value is None else value

    def int_setting(self, name: str, default: Optional[int] = None) -> Optional[int]:
        value = self.setting(name, default)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{name} must be an integer, got {value!r}") from e

    def bool_setting(self, name: str) -> bool:
        value = self.setting(name, False)
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes')
        return bool(value)

    # ------------------------------------------------------------------

    def build_config(self) -> ClusterConfig:
        username = self.setting('cluster_username')
        password = self.setting('cluster_password')
        if not username:
            raise ValidationError("--cluster-username is required")
        if not password:
            raise ValidationError("--cluster-password is required")

        services = parse_services(self.setting('services', Defaults.SERVICES))
        memory = resolve_memory_quota(
            services,
            data_mb=self.int_setting('data_ramsize'),
            index_mb=self.int_setting('index_ramsize'),
            search_mb=self.int_setting('fts_ramsize'),
        )

        port_values = {}
        for dest, field_name, _ in PORT_OPTIONS:
            value = self.int_setting(dest)
            if value is not None:
                port_values[field_name] = value

        return ClusterConfig(
            name=str(self.setting('cluster_name') or self.setting('asg_name') or Defaults.CLUSTER_NAME),
            admin_username=str(username),
            admin_password=str(password),
            services=services,
            memory=memory,
            index_storage_mode=str(self.setting('index_storage_setting', Defaults.INDEX_STORAGE_SETTING)),
            ports=NetworkPorts(**port_values),
        )

    def build_directory(self) -> Optional[FleetDirectory]:
        fleet_file = self.setting('fleet_file')
        if fleet_file:
            return FileFleetDirectory(fleet_file)

        if self.setting('asg_name'):
            use_public = self.bool_setting('use_public_hostname')
            region = self.setting('aws_region')
            if region:
                return AwsCliFleetDirectory(region, use_public_hostname=use_public)
            return AwsCliFleetDirectory.for_current_region(use_public_hostname=use_public)

        return None

    def resolve_hostnames(self, directory: Optional[FleetDirectory]) -> Tuple[str, str]:
        """Return ``(node_hostname, rally_point_hostname)``."""
        group = self.setting('asg_name')
        if directory is not None and not group:
            raise ValidationError("--asg-name is required to look up the fleet")

        node_hostname = self.setting('node_hostname')
        if not node_hostname and directory is not None:
            instance_id = self.setting('instance_id')
            if not instance_id and isinstance(directory, AwsCliFleetDirectory):
                instance_id = instance_metadata('instance-id')
            if not instance_id:
                raise ValidationError(
                    "Cannot tell which fleet instance this node is; "
                    "pass --instance-id or --node-hostname"
                )
            node_hostname = directory.find_instance(group, instance_id).hostname
        if not node_hostname:
            node_hostname = socket.getfqdn()

        rally_point_hostname = self.setting('rally_point_hostname')
        if not rally_point_hostname:
            if directory is None:
                raise ValidationError(
                    "Specify --rally-point-hostname, or --asg-name with a fleet source"
                )
            instances = directory.get_instances(group)
            rally_point = select_rally_point(instances)
            logger.info(
                f"Rally point for {group}: {rally_point.instance_id} ({rally_point.hostname})"
            )
            # is_rally_point compares hostnames, so this node must appear as listed
            if node_hostname not in {i.hostname for i in instances}:
                raise ValidationError(
                    f"Node hostname {node_hostname} is not listed in fleet group {group}; "
                    f"pass the hostname the fleet directory uses"
                )
            rally_point_hostname = rally_point.hostname

        return str(node_hostname), str(rally_point_hostname)

    def run(self) -> int:
        config = self.build_config()
        logger.verbose(f"Cluster configuration: {config.to_dict()}")

        node_hostname, rally_point_hostname = self.resolve_hostnames(self.build_directory())

        if not self.bool_setting('skip_service_setup'):
            configure_ports(
                config.ports,
                static_config=self.setting('static_config', Paths.STATIC_CONFIG),
                capi_ini=self.setting('capi_ini', Paths.CAPI_INI),
            )
            start_service()

        manager = ClusterManager(
            CouchbaseCli(self.setting('couchbase_cli', Paths.COUCHBASE_CLI)),
            config,
            node_hostname=node_hostname,
            rally_point_hostname=rally_point_hostname,
        )
        manager.bootstrap()
        return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_from_environment(
        verbose=args.verbose,
        trace=args.trace,
        log_file=args.log_file,
        json_format=args.log_json,
    )

    try:
        settings = load_settings_file(args.config_file) if args.config_file else {}
        return BootstrapCLI(args, settings).run()
    except BootstrapError as e:
        handle_error(e, "run-couchbase-cluster")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())

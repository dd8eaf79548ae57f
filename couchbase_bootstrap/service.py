"""
Service plumbing - port configuration and Couchbase service start-up.

Couchbase reads most of its ports from ``static_config`` (Erlang terms,
one ``{name, value}.`` per line) and the CAPI ports from ``capi.ini``.
Both files are patched in place before the service is started; entries
that already carry the requested value are left untouched, so repeated
runs are harmless.
"""

import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Union

from .config import NetworkPorts
from .constants import Defaults, Paths, Timeouts
from .exceptions import ServiceError
from .logging_config import get_logger

logger = get_logger(__name__)


def patch_static_config(content: str, entries: Dict[str, int]) -> str:
    """Set ``{name, port}.`` entries in static_config text, appending missing ones."""
    lines = content.splitlines()
    remaining = dict(entries)

    for index, line in enumerate(lines):
        match = re.match(r'^\s*\{\s*([a-z_]+)\s*,', line)
        if match and match.group(1) in remaining:
            name = match.group(1)
            lines[index] = f"{{{name}, {remaining.pop(name)}}}."

    for name, port in remaining.items():
        lines.append(f"{{{name}, {port}}}.")

    return '\n'.join(lines) + '\n'


def patch_capi_ini(content: str, http_port: int, ssl_port: int) -> str:
    """Set ``port`` in the [httpd] and [ssl] sections, adding sections as needed."""
    wanted = {'httpd': http_port, 'ssl': ssl_port}
    done = set()
    lines: List[str] = []
    section = None

    def close_section():
        if section in wanted and section not in done:
            lines.append(f"port = {wanted[section]}")
            done.add(section)

    for line in content.splitlines():
        header = re.match(r'^\s*\[([^\]]+)\]\s*$', line)
        if header:
            close_section()
            section = header.group(1).strip()
            lines.append(line)
            continue

        if section in wanted and re.match(r'^\s*port\s*=', line):
            if section not in done:
                lines.append(f"port = {wanted[section]}")
                done.add(section)
            continue

        lines.append(line)

    close_section()

    for name, port in wanted.items():
        if name not in done:
            lines.extend([f"[{name}]", f"port = {port}"])

    return '\n'.join(lines) + '\n'


def _rewrite(path: Path, transform: Callable[[str], str]) -> bool:
    try:
        original = path.read_text() if path.exists() else ''
        updated = transform(original)
        if updated == original:
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(updated)
    except OSError as e:
        raise ServiceError(f"Could not update {path}: {e}") from e
    return True


def configure_ports(
    ports: NetworkPorts,
    static_config: Union[str, Path] = Paths.STATIC_CONFIG,
    capi_ini: Union[str, Path] = Paths.CAPI_INI,
) -> bool:
    """
    Write ``ports`` into Couchbase's configuration files.

    Returns:
        True if either file changed
    """
    static_path = Path(static_config)
    capi_path = Path(capi_ini)

    changed_static = _rewrite(
        static_path, lambda text: patch_static_config(text, ports.static_config_entries())
    )
    changed_capi = _rewrite(
        capi_path, lambda text: patch_capi_ini(text, ports.capi, ports.ssl_capi)
    )

    if changed_static or changed_capi:
        logger.info(f"Updated Couchbase ports in {static_path} and {capi_path}")
    else:
        logger.verbose("Couchbase port configuration already up to date")
    return changed_static or changed_capi


def start_service(
    name: str = Defaults.SERVICE_NAME,
    systemctl: str = Paths.SYSTEMCTL,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> None:
    """Enable and start the Couchbase service with systemd."""
    for action in ('enable', 'start'):
        command = [systemctl, action, name]
        logger.info(f"Running: {' '.join(command)}")
        try:
            result = runner(
                command,
                capture_output=True,
                text=True,
                timeout=Timeouts.SERVICE_START,
            )
        except subprocess.TimeoutExpired as e:
            raise ServiceError(f"systemctl {action} {name} timed out") from e
        except OSError as e:
            raise ServiceError(f"Could not execute {systemctl}: {e}") from e

        if result.returncode != 0:
            output = (result.stdout or '') + (result.stderr or '')
            raise ServiceError(
                f"systemctl {action} {name} failed (exit {result.returncode})",
                output=output,
            )


__all__ = [
    'patch_static_config',
    'patch_capi_ini',
    'configure_ports',
    'start_service',
]

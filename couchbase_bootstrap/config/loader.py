"""
Settings file loading.

A settings file supplies any command-line option by its long name, e.g.::

    cluster-username: admin
    cluster-password: secret
    services: [data, index, query]
    data-ramsize: 2048

JSON and YAML are supported; the format is detected from the file
extension, falling back to content sniffing. Keys are normalized to
underscores so they line up with argparse destinations.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from ..exceptions import ValidationError
from ..logging_config import get_logger

logger = get_logger(__name__)


class ConfigFormat(Enum):
    """Supported settings file formats."""
    JSON = "json"
    YAML = "yaml"
    AUTO = "auto"  # Detect from file extension


def detect_format(filepath: Path) -> ConfigFormat:
    """Detect settings format from file extension or content."""
    ext = filepath.suffix.lower()
    if ext == '.json':
        return ConfigFormat.JSON
    if ext in {'.yaml', '.yml'}:
        return ConfigFormat.YAML

    content = filepath.read_text().lstrip()
    if content.startswith('{'):
        return ConfigFormat.JSON
    return ConfigFormat.YAML


def normalize_key(key: str) -> str:
    return key.strip().lstrip('-').replace('-', '_')


def load_settings_file(
    filepath: Union[str, Path],
    format: ConfigFormat = ConfigFormat.AUTO,
) -> Dict[str, Any]:
    """
    Load a settings file into a flat dictionary.

    Raises:
        ValidationError: the file is missing, unparsable, or not a mapping
    """
    filepath = Path(filepath)
    if not filepath.is_file():
        raise ValidationError(f"Settings file not found: {filepath}")

    if format == ConfigFormat.AUTO:
        format = detect_format(filepath)

    content = filepath.read_text()
    try:
        if format == ConfigFormat.JSON:
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError(f"Could not parse settings file {filepath}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(
            f"Settings file {filepath} must contain a mapping, got {type(data).__name__}"
        )

    settings = {normalize_key(str(key)): value for key, value in data.items()}
    logger.info(f"Loaded {len(settings)} settings from {filepath}")
    return settings


__all__ = [
    'ConfigFormat',
    'detect_format',
    'load_settings_file',
]

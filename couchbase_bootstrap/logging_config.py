"""
Logging Configuration for Couchbase Bootstrap.

Provides centralized logging configuration with a verbose mode toggle,
pipeline-style step logging and structured (JSON) log formatting.

Usage:
    from couchbase_bootstrap.logging_config import setup_logging, get_logger

    # Setup at startup
    setup_logging(verbose=True)

    # Get a component logger
    logger = get_logger('couchbase_bootstrap.distributed.cluster_manager')
    logger.pipeline_start("join_existing_cluster", node="10.0.0.5:8091")
"""

import os
import sys
import json
import logging
import threading
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field


# =============================================================================
# LOGGING LEVELS AND FEATURES
# =============================================================================

class LogLevel(Enum):
    """Extended logging levels for the bootstrap tool."""
    TRACE = 5       # Raw control-plane output
    DEBUG = 10      # Debug information
    VERBOSE = 15    # Command lines, probe results
    INFO = 20       # Standard information
    NOTICE = 25     # Membership transitions
    WARNING = 30    # Warning conditions
    ERROR = 40      # Error conditions
    CRITICAL = 50   # Critical conditions


class FeatureArea(Enum):
    """Feature areas, derived from the logger name."""
    CORE = auto()           # CLI and orchestration
    CONFIG = auto()         # Configuration and memory planning
    CONTROL_PLANE = auto()  # couchbase-cli invocations
    DIRECTORY = auto()      # Fleet directory and rally point
    MEMBERSHIP = auto()     # Cluster membership state machine
    RETRY = auto()          # Retry/backoff engine
    SERVICE = auto()        # Port configuration and service start


logging.addLevelName(5, 'TRACE')
logging.addLevelName(15, 'VERBOSE')
logging.addLevelName(25, 'NOTICE')


@dataclass
class LoggingState:
    """Logging configuration state."""
    verbose: bool = False
    trace: bool = False
    log_file: Optional[str] = None
    console_enabled: bool = True
    json_format: bool = False
    initialized: bool = False
    _lock: threading.RLock = field(default_factory=threading.RLock)


_state = LoggingState()

_FEATURE_MAP = {
    'config': FeatureArea.CONFIG,
    'memory': FeatureArea.CONFIG,
    'control_plane': FeatureArea.CONTROL_PLANE,
    'status': FeatureArea.CONTROL_PLANE,
    'fleet': FeatureArea.DIRECTORY,
    'rally_point': FeatureArea.DIRECTORY,
    'cluster_manager': FeatureArea.MEMBERSHIP,
    'retry': FeatureArea.RETRY,
    'service': FeatureArea.SERVICE,
}


def detect_feature(logger_name: str) -> FeatureArea:
    """Map a logger name to its feature area."""
    name_lower = logger_name.lower()
    for key, feature in _FEATURE_MAP.items():
        if key in name_lower:
            return feature
    return FeatureArea.CORE


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================

class BootstrapFormatter(logging.Formatter):
    """Formatter with color support and structured output."""

    COLORS = {
        'TRACE': '\033[90m',      # Gray
        'DEBUG': '\033[36m',      # Cyan
        'VERBOSE': '\033[94m',    # Light blue
        'INFO': '\033[32m',       # Green
        'NOTICE': '\033[33m',     # Yellow
        'WARNING': '\033[33;1m',  # Bold yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[31;1m', # Bold red
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, json_format: bool = False):
        self.use_colors = use_colors and sys.stdout.isatty()
        self.json_format = json_format
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        level_name = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level_name, '')
            reset = self.COLORS['RESET']
            level_str = f"{color}{level_name:8}{reset}"
        else:
            level_str = f"{level_name:8}"

        feature_str = f"[{detect_feature(record.name).name.lower()}]"
        msg = record.getMessage()

        extra_str = ""
        if hasattr(record, 'extra_data') and record.extra_data:
            extra_items = [f"{k}={v}" for k, v in record.extra_data.items()]
            extra_str = f" | {', '.join(extra_items)}"

        line = f"{timestamp} {level_str} {feature_str:16} {msg}{extra_str}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line

    def _format_json(self, record: logging.LogRecord) -> str:
        data = {
            'timestamp': datetime.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'feature': detect_feature(record.name).name.lower(),
        }

        if hasattr(record, 'extra_data') and record.extra_data:
            data['extra'] = record.extra_data

        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)


# =============================================================================
# CUSTOM LOGGER CLASS
# =============================================================================

class BootstrapLogger(logging.Logger):
    """Extended logger with extra levels and pipeline helpers."""

    def trace(self, msg: str, *args, **kwargs):
        """Log at TRACE level (raw command output)."""
        if self.isEnabledFor(5):
            self._log(5, msg, args, **kwargs)

    def verbose(self, msg: str, *args, **kwargs):
        """Log at VERBOSE level."""
        if self.isEnabledFor(15):
            self._log(15, msg, args, **kwargs)

    def notice(self, msg: str, *args, **kwargs):
        """Log at NOTICE level."""
        if self.isEnabledFor(25):
            self._log(25, msg, args, **kwargs)

    def log_with_data(self, level: int, msg: str, data: Dict[str, Any], **kwargs):
        """Log with structured extra data."""
        extra = kwargs.get('extra', {})
        extra['extra_data'] = data
        kwargs['extra'] = extra
        if self.isEnabledFor(level):
            self._log(level, msg, (), **kwargs)

    def pipeline_start(self, pipeline_name: str, **data):
        """Log pipeline start."""
        self.info(f"Pipeline START: {pipeline_name}", extra={'extra_data': data})

    def pipeline_end(self, pipeline_name: str, success: bool, **data):
        """Log pipeline end."""
        status = "SUCCESS" if success else "FAILED"
        level = logging.INFO if success else logging.ERROR
        if self.isEnabledFor(level):
            self._log(level, f"Pipeline END: {pipeline_name} - {status}",
                      (), extra={'extra_data': data})

    def pipeline_step(self, step_name: str, **data):
        """Log pipeline step."""
        self.verbose(f"  Step: {step_name}", extra={'extra_data': data})


logging.setLoggerClass(BootstrapLogger)


# =============================================================================
# SETUP AND CONFIGURATION
# =============================================================================

def setup_logging(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
) -> None:
    """
    Initialize the logging system.

    Args:
        verbose: Enable verbose logging (VERBOSE level)
        trace: Enable trace logging (TRACE level, implies verbose)
        log_file: Optional file path for log output
        console: Enable console output
        json_format: Use JSON format for logs
    """
    with _state._lock:
        _state.verbose = verbose or trace
        _state.trace = trace
        _state.log_file = log_file
        _state.console_enabled = console
        _state.json_format = json_format

        if trace:
            base_level = 5
        elif verbose:
            base_level = 15
        else:
            base_level = logging.INFO

        root = logging.getLogger()
        root.setLevel(base_level)

        for handler in root.handlers[:]:
            root.removeHandler(handler)

        if console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(base_level)
            console_handler.setFormatter(BootstrapFormatter(
                use_colors=True,
                json_format=json_format
            ))
            root.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(base_level)
            file_handler.setFormatter(BootstrapFormatter(
                use_colors=False,
                json_format=json_format
            ))
            root.addHandler(file_handler)

        _state.initialized = True


def get_logger(name: str) -> BootstrapLogger:
    """
    Get a bootstrap logger.

    Loggers created before this module was imported are plain
    ``logging.Logger`` instances; those are returned unchanged.
    """
    return logging.getLogger(name)


def set_verbose(enabled: bool) -> None:
    """Toggle verbose mode at runtime."""
    with _state._lock:
        _state.verbose = enabled
        level = 15 if enabled else logging.INFO

        root = logging.getLogger()
        root.setLevel(level)

        for handler in root.handlers:
            handler.setLevel(level)


def is_verbose() -> bool:
    """Check if verbose mode is enabled."""
    return _state.verbose


def get_logging_state() -> Dict[str, Any]:
    """Get current logging configuration state."""
    with _state._lock:
        return {
            'verbose': _state.verbose,
            'trace': _state.trace,
            'log_file': _state.log_file,
            'console_enabled': _state.console_enabled,
            'json_format': _state.json_format,
            'initialized': _state.initialized,
        }


# =============================================================================
# ENVIRONMENT VARIABLE CONFIGURATION
# =============================================================================

def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def configure_from_environment(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure logging from environment variables.

    Explicit arguments (typically from the command line) are OR-ed with the
    COUCHBASE_BOOTSTRAP_VERBOSE / _TRACE / _LOG_JSON flags; an explicit
    log file wins over COUCHBASE_BOOTSTRAP_LOG_FILE.
    """
    setup_logging(
        verbose=verbose or _env_flag('COUCHBASE_BOOTSTRAP_VERBOSE'),
        trace=trace or _env_flag('COUCHBASE_BOOTSTRAP_TRACE'),
        log_file=log_file or os.environ.get('COUCHBASE_BOOTSTRAP_LOG_FILE'),
        console=not _env_flag('COUCHBASE_BOOTSTRAP_LOG_NO_CONSOLE'),
        json_format=json_format or _env_flag('COUCHBASE_BOOTSTRAP_LOG_JSON'),
    )


__all__ = [
    'LogLevel',
    'FeatureArea',
    'detect_feature',
    'setup_logging',
    'configure_from_environment',
    'get_logger',
    'set_verbose',
    'is_verbose',
    'get_logging_state',
    'BootstrapLogger',
    'BootstrapFormatter',
]

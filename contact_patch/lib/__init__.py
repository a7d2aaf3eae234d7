"""ContactPatch library modules."""

from .logger import (
    log,
    get_logger,
    set_verbosity,
    set_verbosity_from_string,
    set_module,
    LogLevel,
    LOG_LEVEL_CHOICES,
    LOG_LEVEL_MAP
)

__all__ = [
    'log',
    'get_logger',
    'set_verbosity',
    'set_verbosity_from_string',
    'set_module',
    'LogLevel',
    'LOG_LEVEL_CHOICES',
    'LOG_LEVEL_MAP',
]

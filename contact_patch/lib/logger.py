"""
ContactPatch Centralized Logger

One verbosity setting shared by every module; each module logs through a
named child so lines carry their origin.

Usage:
    from contact_patch.lib.logger import get_logger, set_verbosity, LogLevel

    log = get_logger("Acquisition")
    set_verbosity(LogLevel.DEBUG)

    log.info("Tracker created")
    log.frame_info(12, raw=18, filtered=9, held=False)
    log.warn("Contact plane normal is degenerate")

Verbosity Levels:
    SILENT  (0) - No output
    ERROR   (1) - Errors only
    WARN    (2) - Errors + warnings (clamped config, degenerate plane)
    INFO    (3) - Normal operation messages (DEFAULT)
    STATUS  (4) - Info + hold-last / progress updates
    DEBUG   (5) - Everything including per-frame contact diagnostics

Environment:
    CONTACT_PATCH_LOG_LEVEL       SILENT/ERROR/WARN/INFO/STATUS/DEBUG
    CONTACT_PATCH_LOG_TIMESTAMPS  0 to drop the HH:MM:SS.mmm prefix
"""

from enum import IntEnum
from typing import Dict, Optional
from datetime import datetime
import os

import numpy as np


class LogLevel(IntEnum):
    """Verbosity levels for logging."""
    SILENT = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    STATUS = 4
    DEBUG = 5


# String to LogLevel mapping for node parameter
LOG_LEVEL_MAP = {
    "Silent": LogLevel.SILENT,
    "Errors Only": LogLevel.ERROR,
    "Warnings": LogLevel.WARN,
    "Normal (Info)": LogLevel.INFO,
    "Verbose (Status)": LogLevel.STATUS,
    "Debug (All)": LogLevel.DEBUG,
}

LOG_LEVEL_CHOICES = list(LOG_LEVEL_MAP.keys())


def _format_value(value) -> str:
    if isinstance(value, (float, np.floating)):
        return f"{value:.4f}"
    if isinstance(value, np.ndarray):
        return "(" + ", ".join(f"{v:.4f}" for v in value.ravel()) + ")"
    return str(value)


class Logger:
    """Verbosity-controlled stdout logger with timestamps and module prefix."""

    def __init__(self, prefix: str = "ContactPatch", parent: Optional["Logger"] = None,
                 module: Optional[str] = None):
        self.prefix = prefix
        self._parent = parent
        self._module = module
        self._level = LogLevel.INFO
        self._show_timestamp = True

    # Children defer level/timestamp settings to the root logger
    @property
    def level(self) -> LogLevel:
        return self._parent.level if self._parent is not None else self._level

    @property
    def show_timestamp(self) -> bool:
        return self._parent.show_timestamp if self._parent is not None else self._show_timestamp

    @show_timestamp.setter
    def show_timestamp(self, value: bool):
        if self._parent is not None:
            self._parent.show_timestamp = value
        else:
            self._show_timestamp = bool(value)

    def set_level(self, level: LogLevel):
        """Set global verbosity level."""
        if self._parent is not None:
            self._parent.set_level(level)
        else:
            self._level = LogLevel(level)

    def set_level_from_string(self, level_str: str):
        """Set level from node parameter string."""
        self.set_level(LOG_LEVEL_MAP.get(level_str, LogLevel.INFO))

    def set_module(self, module: Optional[str]):
        """Set module name for this logger's prefix."""
        self._module = module

    def child(self, module: str) -> "Logger":
        root = self._parent if self._parent is not None else self
        return Logger(self.prefix, parent=root, module=module)

    def _format(self, msg: str, tag: Optional[str] = None) -> str:
        prefix = f"[{self.prefix}:{self._module}]" if self._module else f"[{self.prefix}]"
        parts = []
        if self.show_timestamp:
            parts.append(f"[{datetime.now().strftime('%H:%M:%S.%f')[:-3]}]")
        parts.append(prefix)
        if tag:
            parts.append(f"[{tag}]")
        parts.append(msg)
        return " ".join(parts)

    def _emit(self, level: LogLevel, msg: str, tag: Optional[str] = None):
        if self.level >= level:
            print(self._format(msg, tag))

    def error(self, msg: str):
        """Log error message (always shown unless SILENT)."""
        self._emit(LogLevel.ERROR, msg, "ERROR")

    def warn(self, msg: str):
        self._emit(LogLevel.WARN, msg, "WARN")

    def info(self, msg: str):
        self._emit(LogLevel.INFO, msg)

    def status(self, msg: str):
        self._emit(LogLevel.STATUS, msg)

    def debug(self, msg: str):
        self._emit(LogLevel.DEBUG, msg, "DEBUG")

    def progress(self, current: int, total: int, task: str = "", interval: int = 10):
        """
        Log progress at STATUS, every ``interval`` items plus first and last.

        Args:
            current: Current item (0-indexed)
            total: Total items
            task: Task description
            interval: Print every N items (default 10)
        """
        if self.level < LogLevel.STATUS or total <= 0:
            return

        if current == 0 or current == total - 1 or (current + 1) % interval == 0:
            pct = (current + 1) / total * 100
            self.status(f"{task or 'Progress'}: {current + 1}/{total} ({pct:.0f}%)")

    def section(self, title: str):
        """Log section header for major operations."""
        self._emit(LogLevel.INFO, f"===== {title} =====")

    def frame_info(self, frame_idx: int, **kwargs):
        """
        Per-frame diagnostics at DEBUG; floats and arrays are rounded.

        Usage:
            log.frame_info(0, raw=12, filtered=9, center=np.array([0.1, 0.0, 0.2]))
        """
        if self.level < LogLevel.DEBUG:
            return
        parts = [f"{k}={_format_value(v)}" for k, v in kwargs.items()]
        print(self._format(f"Frame {frame_idx}: {', '.join(parts)}", "DEBUG"))


# Global logger instance
log = Logger()

_children: Dict[str, Logger] = {}


def get_logger(module: str) -> Logger:
    """Named child of the global logger (shares its verbosity)."""
    if module not in _children:
        _children[module] = log.child(module)
    return _children[module]


def set_verbosity(level: LogLevel):
    """Set global verbosity level."""
    log.set_level(level)


def set_verbosity_from_string(level_str: str):
    """Set global verbosity from node parameter string."""
    log.set_level_from_string(level_str)


def set_module(module: Optional[str]):
    """Set module name on the global logger's prefix."""
    log.set_module(module)


# Environment variable override (fallback if not set via node)
_env_level = os.environ.get("CONTACT_PATCH_LOG_LEVEL", "").upper()
if _env_level in LogLevel.__members__:
    log.set_level(LogLevel[_env_level])

if os.environ.get("CONTACT_PATCH_LOG_TIMESTAMPS", "1") == "0":
    log.show_timestamp = False

"""Utility module initialization."""

from .collections import find_index, upsert
from .logging import ShellLog, get_logger, setup_logging
from .paths import format_size, format_size_token, relative_parts
from .timeutil import backup_date, format_duration, now_display

__all__ = [
    # collections
    "find_index",
    "upsert",
    # logging
    "ShellLog",
    "get_logger",
    "setup_logging",
    # paths
    "format_size",
    "format_size_token",
    "relative_parts",
    # timeutil
    "backup_date",
    "format_duration",
    "now_display",
]

"""Utility functions for time operations."""

from datetime import datetime
from typing import Optional

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"
DIRECTORY_FORMAT = "%Y-%m-%d_%H-%M-%S"


def now_display() -> str:
    """Current local time as shown in the run history."""
    return datetime.now().strftime(DISPLAY_FORMAT)


def backup_date(now: Optional[datetime] = None) -> str:
    """Directory name for a new dated restore point."""
    if now is None:
        now = datetime.now()
    return now.strftime(DIRECTORY_FORMAT)


def format_duration(seconds: float) -> str:
    """Format duration in human readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"

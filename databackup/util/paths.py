"""Utility functions for path operations."""

from pathlib import PurePosixPath
from typing import List, Optional


def relative_parts(path: str, root: str) -> Optional[List[str]]:
    """Split ``path`` into its segments below ``root``.

    Returns None when ``path`` does not live under ``root``. The comparison is
    done segment by segment, so a root string occurring elsewhere in the path
    does not match.
    """
    try:
        relative = PurePosixPath(path).relative_to(PurePosixPath(root))
    except ValueError:
        return None
    return list(relative.parts)


def format_size(size_bytes: float) -> str:
    """Format file size in human readable format."""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while size_bytes >= 1024.0 and i < len(size_names) - 1:
        size_bytes /= 1024.0
        i += 1

    return f"{size_bytes:.1f} {size_names[i]}"


def format_size_token(token: str, unit: int = 1024) -> str:
    """Render a size fingerprint for display; non-numeric tokens pass through."""
    try:
        return format_size(int(token) * unit)
    except (TypeError, ValueError):
        return token

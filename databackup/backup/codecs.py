"""Archive codec names and file suffixes."""

import posixpath
from typing import Optional

from ..config import CompressionType

_SUFFIXES = {
    CompressionType.TAR: "tar",
    CompressionType.LZ4: "tar.lz4",
    CompressionType.ZSTD: "tar.zst",
}

_BY_EXTENSION = {
    "tar": CompressionType.TAR,
    "lz4": CompressionType.LZ4,
    "zst": CompressionType.ZSTD,
}

# Program handed to ``tar -I``; plain tar needs none.
_PROGRAMS = {
    CompressionType.TAR: None,
    CompressionType.LZ4: "lz4",
    CompressionType.ZSTD: "zstd",
}


def suffix_for(compression_type: CompressionType) -> str:
    """File suffix of archives written with ``compression_type``."""
    return _SUFFIXES[CompressionType(compression_type)]


def codec_for(archive_path: str) -> Optional[CompressionType]:
    """Codec of an archive judged by its last file extension, or None."""
    name = posixpath.basename(archive_path.rstrip("/"))
    if "." not in name:
        return None
    return _BY_EXTENSION.get(name.rsplit(".", 1)[1])


def program_for(compression_type: CompressionType) -> Optional[str]:
    return _PROGRAMS[CompressionType(compression_type)]


def archive_name(stem: str, compression_type: CompressionType) -> str:
    """``apk.tar.zst``, ``user.tar``, ``Pictures.tar.lz4`` ..."""
    return f"{stem}.{suffix_for(compression_type)}"

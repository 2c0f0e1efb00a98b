"""Directory size fingerprints used for incremental-skip decisions."""

from enum import Enum

from ..adb.shell import RootShell, quote

EMPTY_SIZE = "0"


class SizeMode(int, Enum):
    """Accounting used by :func:`size_of`."""

    APPARENT = 0  # bytes of content, sparse regions counted in full
    OCCUPIED = 1  # kilobytes of blocks actually allocated


def size_of(shell: RootShell, path: str, mode: SizeMode = SizeMode.OCCUPIED) -> str:
    """Opaque size token of ``path``.

    The token is the first field ``du`` prints and is only ever compared for
    equality. ``"0"`` is returned when the command fails or prints nothing.
    """
    flags = "-bs" if mode == SizeMode.APPARENT else "-ks"
    result = shell.execute(f"du {flags} {quote(path)}", log_enabled=False)
    if not result.success:
        return EMPTY_SIZE

    fields = result.first_line.split()
    return fields[0] if fields else EMPTY_SIZE

"""Shell command lines run by the archive pipeline."""

import posixpath
import re
from typing import Optional

from ..adb.shell import quote
from ..config import CompressionType
from .codecs import archive_name, program_for
from .models import DataCategory

# Per-app directories that are rebuilt by the system and never archived.
EXCLUDED_APP_DIRS = ("cache", "code_cache", "lib")

AID_APP_START = 10000

_SESSION_RE = re.compile(r"\[(\d+)\]")
_CATEGORIES_RE = re.compile(r"^(.*:s0)(?::(c\d+(?:,c\d+)*))?$")


def _filter_flag(compression_type: CompressionType) -> str:
    program = program_for(compression_type)
    return f"-I {program} " if program else ""


def archive_stem(data_type: DataCategory, entity_key: str) -> str:
    """Media archives are named after the medium, app archives after the category."""
    return entity_key if data_type == DataCategory.MEDIA else data_type.value


def archive_path(compression_type: CompressionType, data_type: DataCategory, entity_key: str, output_dir: str) -> str:
    return posixpath.join(output_dir, archive_name(archive_stem(data_type, entity_key), compression_type))


def compress(
    compression_type: CompressionType,
    data_type: DataCategory,
    entity_key: str,
    output_dir: str,
    data_path: str,
) -> str:
    """Archive ``data_path`` (media) or ``data_path/entity_key`` (app data)."""
    target = quote(archive_path(compression_type, data_type, entity_key, output_dir))
    flag = _filter_flag(compression_type)

    if data_type == DataCategory.MEDIA:
        parent, name = posixpath.split(data_path.rstrip("/"))
        return f"tar {flag}-cpf {target} -C {quote(parent or '/')} {quote(name)}"

    excludes = " ".join(f"--exclude={quote(posixpath.join(entity_key, d))}" for d in EXCLUDED_APP_DIRS)
    return f"tar {excludes} {flag}-cpf {target} -C {quote(data_path)} {quote(entity_key)}"


def compress_apk(compression_type: CompressionType, output_dir: str) -> str:
    """Archive every APK in the current working directory."""
    target = quote(archive_path(compression_type, DataCategory.APK, "", output_dir))
    return f"tar {_filter_flag(compression_type)}-cpf {target} *.apk"


def decompress(
    compression_type: CompressionType,
    data_type: DataCategory,
    input_path: str,
    data_path: str,
) -> str:
    """Extract an archive made by :func:`compress` back into place."""
    flag = _filter_flag(compression_type)
    if data_type == DataCategory.MEDIA:
        destination = posixpath.dirname(data_path.rstrip("/")) or "/"
    else:
        destination = data_path
    q = quote(destination)
    return f"mkdir -p {q} && tar {flag}-xpf {quote(input_path)} -C {q}"


def extract_to(compression_type: CompressionType, input_path: str, directory: str) -> str:
    """Extract into a freshly emptied ``directory``."""
    q = quote(directory)
    return f"rm -rf {q} && mkdir -p {q} && tar {_filter_flag(compression_type)}-xpf {quote(input_path)} -C {q}"


def test_archive(compression_type: CompressionType, path: str) -> str:
    q = quote(path)
    compression_type = CompressionType(compression_type)
    if compression_type == CompressionType.ZSTD:
        return f"zstd -t -q {q}"
    if compression_type == CompressionType.LZ4:
        return f"lz4 -t -q {q}"
    return f"tar -tf {q} > /dev/null"


def install_apk(apk_path: str, user_id: str) -> str:
    return f"pm install --user {quote(user_id)} -r -t {quote(apk_path)}"


def install_create(user_id: str) -> str:
    return f"pm install-create --user {quote(user_id)} -r -t"


def install_write(session_id: str, apk_path: str) -> str:
    return f"pm install-write {quote(session_id)} {quote(posixpath.basename(apk_path))} {quote(apk_path)}"


def install_commit(session_id: str) -> str:
    return f"pm install-commit {quote(session_id)}"


def parse_session_id(line: str) -> Optional[str]:
    """``Success: created install session [1234]`` -> ``1234``."""
    match = _SESSION_RE.search(line)
    return match.group(1) if match else None


def chown(owner: str, group: str, path: str) -> str:
    return f"chown -hR {quote(owner)}:{quote(group)} {quote(path)}"


def chcon(context: str, path: str) -> str:
    return f"chcon -hR {quote(context)} {quote(path)}"


def restorecon(path: str) -> str:
    return f"restorecon -RF {quote(path)}"


def read_context(path: str) -> str:
    return f"ls -Zd {quote(path)}"


def group_of(path: str) -> str:
    return f"stat -c %g {quote(path)}"


def fix_multi_user_context(context: str, uid: int) -> str:
    """Rewrite the MLS categories of ``context`` for the user that owns ``uid``.

    App data carries ``c512+``/``c768+`` categories derived from the user id
    and, for apps isolated per app, ``c0+``/``c256+`` categories derived from
    the app id. Contexts without categories are returned unchanged.
    """
    match = _CATEGORIES_RE.match(context.strip())
    if not match or not match.group(2):
        return context

    user_id, app_id = divmod(uid, 100000)
    if app_id >= AID_APP_START:
        app_id -= AID_APP_START
    user_categories = [f"c{512 + (user_id & 0xff)}", f"c{768 + ((user_id >> 8) & 0xff)}"]
    categories = match.group(2).split(",")

    if len(categories) >= 4:
        app_categories = [f"c{app_id & 0xff}", f"c{256 + ((app_id >> 8) & 0xff)}"]
        fixed = app_categories + user_categories
    else:
        fixed = user_categories

    return f"{match.group(1)}:{','.join(fixed)}"

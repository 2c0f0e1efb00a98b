"""Package manager facade over ``pm`` and ``dumpsys``."""

import posixpath
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from ..util.logging import get_logger
from .shell import RootShell, quote

logger = get_logger(__name__)

PER_USER_RANGE = 100000

_USER_RE = re.compile(r"UserInfo\{(\d+):")
_VERSION_CODE_RE = re.compile(r"versionCode[=:](\d+)")


@dataclass
class PackageInfo:
    """Information about an installed package."""

    package_name: str
    label: str = ""
    version_name: str = ""
    version_code: int = 0
    first_install_time: str = ""
    apk_dir: str = ""
    is_system: bool = False


def _strip_package_prefix(line: str) -> str:
    return line.strip()[len("package:"):].strip() if line.strip().startswith("package:") else ""


class PackageManager:
    """Utility for querying and installing packages through the root shell."""

    def __init__(self, shell: RootShell):
        self.shell = shell

    def list_users(self) -> List[str]:
        """Ids of the users known to the device, as strings."""
        result = self.shell.execute("pm list users")
        users = [m.group(1) for m in (_USER_RE.search(line) for line in result.out) if m]
        return users if result.success and users else ["0"]

    def list_packages(self, user_id: str, system_only: bool = False) -> List[str]:
        """List packages installed for ``user_id``."""
        cmd = f"pm list packages --user {quote(user_id)}"
        if system_only:
            cmd += " -s"

        result = self.shell.execute(cmd)
        if not result.success:
            logger.error(f"Failed to list packages for user {user_id}")
            return []

        packages = [name for name in (_strip_package_prefix(line) for line in result.out) if name]
        logger.debug(f"Found {len(packages)} packages for user {user_id}")
        return sorted(packages)

    def list_system_packages(self, user_id: str) -> Set[str]:
        return set(self.list_packages(user_id, system_only=True))

    def _dumpsys(self, package_name: str) -> Dict[str, str]:
        result = self.shell.execute(f"dumpsys package {quote(package_name)}", log_enabled=False)
        info: Dict[str, str] = {}
        if not result.success:
            return info

        for line in result.out:
            line = line.strip()
            for key in ("versionName", "codePath", "firstInstallTime"):
                if line.startswith(f"{key}=") and key not in info:
                    info[key] = line.split("=", 1)[1].strip()
            if "versionCode" not in info:
                match = _VERSION_CODE_RE.search(line)
                if match:
                    info["versionCode"] = match.group(1)
        return info

    def get_package_info(self, package_name: str, user_id: str, is_system: bool = False) -> Optional[PackageInfo]:
        """Get detailed information about a package."""
        info = self._dumpsys(package_name)
        if not info:
            logger.warning(f"No package information for {package_name}")
            return None

        return PackageInfo(
            package_name=package_name,
            label=package_name,
            version_name=info.get("versionName", ""),
            version_code=int(info.get("versionCode", "0") or 0),
            first_install_time=info.get("firstInstallTime", ""),
            apk_dir=info.get("codePath", "") or (self.resolve_apk_directory(package_name, user_id) or ""),
            is_system=is_system,
        )

    def get_installed_packages(self, user_id: str) -> List[PackageInfo]:
        """Detailed information for every package installed for ``user_id``."""
        system = self.list_system_packages(user_id)
        packages = []
        for package_name in self.list_packages(user_id):
            info = self.get_package_info(package_name, user_id, is_system=package_name in system)
            if info:
                packages.append(info)
        return packages

    def resolve_apk_directory(self, package_name: str, user_id: str) -> Optional[str]:
        """Directory holding the installed APK files, or None when not installed."""
        result = self.shell.execute(f"pm path --user {quote(user_id)} {quote(package_name)}")
        if not result.success:
            return None

        for line in result.out:
            apk_path = _strip_package_prefix(line)
            if apk_path:
                return posixpath.dirname(apk_path)
        return None

    def get_version_code(self, user_id: str, package_name: str) -> str:
        """Installed version code, or an empty string when not installed."""
        result = self.shell.execute(
            f"pm list packages --show-versioncode --user {quote(user_id)} {quote(package_name)}"
        )
        if not result.success:
            return ""

        for line in result.out:
            name = _strip_package_prefix(line).split(" ")[0]
            if name == package_name:
                match = _VERSION_CODE_RE.search(line)
                if match:
                    return match.group(1)
        return ""

    def get_uid(self, user_id: str, package_name: str) -> Optional[int]:
        """Linux uid of ``package_name`` for ``user_id``."""
        result = self.shell.execute(f"pm list packages -U --user {quote(user_id)} {quote(package_name)}")
        if not result.success:
            return None

        for line in result.out:
            parts = _strip_package_prefix(line).split()
            if not parts or parts[0] != package_name:
                continue
            for part in parts[1:]:
                if part.startswith("uid:"):
                    try:
                        app_id = int(part[4:].split(",")[0]) % PER_USER_RANGE
                    except ValueError:
                        return None
                    return int(user_id) * PER_USER_RANGE + app_id
        return None

    def disable_verification(self) -> bool:
        """Turn off install-time package verification for this session."""
        commands = [
            "settings put global verifier_verify_adb_installs 0",
            "settings put global package_verifier_enable 0",
        ]
        return all(self.shell.execute(cmd).success for cmd in commands)

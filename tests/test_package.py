"""Tests for the package manager facade."""

from databackup.adb.package import PackageManager


class TestPackageQueries:
    """Test parsing of pm and dumpsys output."""

    def test_list_users(self, shell):
        """Test user ids from pm list users."""
        shell.on("pm list users", out=[
            "Users:",
            "\tUserInfo{0:Owner:c13} running",
            "\tUserInfo{10:Work profile:1030} running",
        ])
        assert PackageManager(shell).list_users() == ["0", "10"]

    def test_list_users_fallback(self, shell):
        """Test that the owner is assumed when pm fails."""
        shell.on("pm list users", success=False)
        assert PackageManager(shell).list_users() == ["0"]

    def test_list_packages(self, shell):
        """Test package names are stripped and sorted."""
        shell.on("pm list packages --user 0", out=["package:com.b", "package:com.a", ""])
        assert PackageManager(shell).list_packages("0") == ["com.a", "com.b"]

    def test_package_info(self, shell):
        """Test fields read from dumpsys."""
        shell.on("dumpsys package com.a", out=[
            "Packages:",
            "  Package [com.a] (1234):",
            "    versionCode=42 minSdk=24 targetSdk=34",
            "    versionName=4.2",
            "    codePath=/data/app/~~x/com.a-1",
            "    firstInstallTime=2024-01-01 10:00:00",
            "    versionName=ignored",
        ])

        info = PackageManager(shell).get_package_info("com.a", "0")

        assert info.version_code == 42
        assert info.version_name == "4.2"
        assert info.apk_dir == "/data/app/~~x/com.a-1"
        assert info.first_install_time == "2024-01-01 10:00:00"

    def test_package_info_missing(self, shell):
        """Test that an unknown package has no information."""
        shell.on("dumpsys package", success=False)
        assert PackageManager(shell).get_package_info("com.none", "0") is None

    def test_resolve_apk_directory(self, shell):
        """Test the APK directory from pm path."""
        shell.on("pm path --user 0 com.a", out=[
            "package:/data/app/com.a-1/base.apk",
            "package:/data/app/com.a-1/split_config.en.apk",
        ])
        assert PackageManager(shell).resolve_apk_directory("com.a", "0") == "/data/app/com.a-1"

    def test_resolve_apk_directory_not_installed(self, shell):
        shell.on("pm path", success=False)
        assert PackageManager(shell).resolve_apk_directory("com.a", "0") is None

    def test_version_code(self, shell):
        """Test that only the exact package matches."""
        shell.on("--show-versioncode", out=[
            "package:com.a.extra versionCode:99",
            "package:com.a versionCode:42",
        ])
        packages = PackageManager(shell)

        assert packages.get_version_code("0", "com.a") == "42"
        assert packages.get_version_code("0", "com.other") == ""

    def test_uid_for_user(self, shell):
        """Test that the uid is computed for the requested user."""
        shell.on("pm list packages -U", out=["package:com.a uid:10123"])
        assert PackageManager(shell).get_uid("10", "com.a") == 1010123

    def test_shared_uid_list(self, shell):
        """Test uid lists printed for shared users."""
        shell.on("pm list packages -U", out=["package:com.a uid:1010123,10123"])
        assert PackageManager(shell).get_uid("0", "com.a") == 10123

    def test_disable_verification(self, shell):
        """Test that both verifier settings are turned off."""
        assert PackageManager(shell).disable_verification()
        assert shell.ran("settings put global") == 2

"""
databackup - privileged incremental backup and restore engine for Android.

Backs up installed applications (APK plus their private, device-encrypted,
external and OBB data) and media directories into dated tar archives on the
device, and restores them for any user:
- Incremental backups skipped when a size fingerprint is unchanged
- Restore points rebuilt from the archive tree on every pass
- Ownership and SELinux context repair after restore
"""

__version__ = "0.1.0"
__author__ = "databackup Contributors"

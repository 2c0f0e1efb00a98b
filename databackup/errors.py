"""Exception hierarchy for databackup."""


class DataBackupError(Exception):
    """Base exception for all databackup errors."""
    pass


class PreconditionError(DataBackupError):
    """A fatal precondition does not hold; nothing else should be attempted."""
    pass


class RootAccessError(PreconditionError):
    """The privileged shell session is not usable."""
    pass


class MissingBinaryError(PreconditionError):
    """A binary required by the archive pipeline is not available."""
    pass


class ConfigError(DataBackupError):
    pass


class EntityNotFoundError(DataBackupError):
    """No backup or restore record exists for the requested key."""
    pass

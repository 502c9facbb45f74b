"""Exceptions raised by the repository backup job."""


class BackupError(Exception):
    """Base class for backup job failures."""


class EventError(BackupError):
    """Trigger event or job inputs are missing or malformed."""


class FetchError(BackupError):
    """Repository could not be cloned (unreachable, auth denied, unknown reference)."""


class ArchiveError(BackupError):
    """Working tree could not be packaged."""


class UploadError(BackupError):
    """Archive could not be written to the backup bucket."""

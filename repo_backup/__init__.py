"""Repository backup to S3.

Clones a branch on every update, packages it as a zip archive and stores
it in an S3 bucket under {repository}/{reference}/{commit}_{timestamp}.zip.
"""

from .errors import BackupError, EventError, FetchError, ArchiveError, UploadError
from .events import BackupEvent, TriggerRule
from .archive import ArchiveResult, archive_name, create_archive, object_key
from .fetch import RepositoryFetcher
from .uploader import S3Uploader, UploadResult, VerifyResult
from .job import BackupJob, BackupResult
from .lifecycle_manager import RetentionPolicyManager, build_retention_policy

__version__ = '1.0.0'
__all__ = [
    'BackupError',
    'EventError',
    'FetchError',
    'ArchiveError',
    'UploadError',
    'BackupEvent',
    'TriggerRule',
    'ArchiveResult',
    'archive_name',
    'create_archive',
    'object_key',
    'RepositoryFetcher',
    'S3Uploader',
    'UploadResult',
    'VerifyResult',
    'BackupJob',
    'BackupResult',
    'RetentionPolicyManager',
    'build_retention_policy',
]

"""Backup job: clone a branch, archive it, upload the archive.

Each run works in its own temporary directory and writes exactly one new
object, so concurrent runs never interfere with each other.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from config import Config
from repo_backup.archive import ArchiveResult, archive_name, create_archive, object_key
from repo_backup.errors import UploadError
from repo_backup.events import BackupEvent
from repo_backup.fetch import RepositoryFetcher
from repo_backup.uploader import S3Uploader, UploadResult

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BackupResult:
    """Outcome of one backup run."""
    event: BackupEvent
    bucket: str
    s3_key: str
    archive: ArchiveResult
    upload: UploadResult
    verified: bool = False

    @property
    def s3_uri(self) -> str:
        return f"s3://{self.bucket}/{self.s3_key}"


class BackupJob:
    """Back up one repository reference per run()."""

    def __init__(
        self,
        config: Config,
        bucket_name: Optional[str] = None,
        fetcher: Optional[RepositoryFetcher] = None,
        uploader: Optional[S3Uploader] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Args:
            config: Application configuration
            bucket_name: Backup bucket (default: config.bucket.name)
            fetcher: Repository fetcher (default: built from config.source)
            uploader: S3 uploader (default: built on first run)
            clock: Source of the archive timestamp
        """
        self.config = config
        self.bucket_name = bucket_name or config.bucket.name
        self.fetcher = fetcher or RepositoryFetcher.from_config(config.source)
        self._uploader = uploader
        self.clock = clock

    @property
    def uploader(self) -> S3Uploader:
        if self._uploader is None:
            self._uploader = S3Uploader(
                self.bucket_name,
                region=self.config.bucket.region,
                upload_config=self.config.upload
            )
        return self._uploader

    def _make_workdir(self) -> Path:
        temp_root = self.config.archive.temp_dir
        if temp_root:
            Path(temp_root).mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix='repo-backup-', dir=temp_root))

    def run(self, event: BackupEvent) -> BackupResult:
        """Clone, archive and upload the repository state for an event.

        Raises:
            FetchError: if the repository cannot be cloned (nothing is uploaded)
            ArchiveError: if the working tree cannot be packaged
            UploadError: if the archive cannot be stored or fails verification
        """
        logger.info(f"Starting backup of {event.describe()}")
        logger.info(f"  Repository: {event.repository_name}")
        logger.info(f"  Reference: {event.reference_name} ({event.reference_type})")
        logger.info(f"  Commit: {event.commit_id}")
        logger.info(f"  Region: {event.region}")
        if event.account_id:
            logger.info(f"  Account: {event.account_id}")
        logger.info(f"  Bucket: {self.bucket_name}")

        workdir = self._make_workdir()
        logger.debug(f"Working directory: {workdir}")

        try:
            clone_root = workdir / 'source'
            clone_root.mkdir()
            self.fetcher.fetch(event, clone_root)

            name = archive_name(event.commit_id, self.clock())
            archive = create_archive(
                clone_root,
                workdir / name,
                compression_level=self.config.archive.compression_level
            )

            s3_key = object_key(event.repository_name, event.reference_name, name)
            upload = self.uploader.upload_archive(
                archive.archive_path,
                s3_key,
                metadata={
                    'repository': event.repository_name,
                    'reference': event.reference_name,
                    'commit_id': event.commit_id,
                }
            )

            result = BackupResult(event, self.bucket_name, s3_key, archive, upload)

            if self.config.upload.verify_after_upload:
                verify = self.uploader.verify_upload(s3_key, archive.compressed_size)
                if not verify.verified:
                    raise UploadError(f"Verification failed for {result.s3_uri}: {verify.error}")
                result.verified = True
                logger.info(f"✓ Verified {result.s3_uri}")

            logger.info(f"✓ Backup complete: {result.s3_uri}")
            return result

        finally:
            if self.config.archive.cleanup:
                shutil.rmtree(workdir, ignore_errors=True)
            else:
                logger.info(f"Keeping working directory: {workdir}")

"""Upload backup archives to S3."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from tqdm import tqdm

from config import UploadConfig
from repo_backup.archive import format_bytes
from repo_backup.errors import UploadError

logger = logging.getLogger(__name__)

MB = 1024 * 1024
CREATED_BY = 'repo-backup'

# Answers to an If-None-Match write when the key exists or is being written
KEY_EXISTS_CODES = ('PreconditionFailed', '412', 'ConditionalRequestConflict', '409')


@dataclass
class UploadResult:
    """Result of an archive upload."""
    s3_key: str
    size: int
    etag: Optional[str] = None
    version_id: Optional[str] = None
    upload_time: float = 0.0


@dataclass
class VerifyResult:
    """Result of checking an uploaded archive."""
    verified: bool
    s3_key: str
    s3_size: int = 0
    expected_size: int = 0
    error: Optional[str] = None


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', '')


class S3Uploader:
    """Write backup archives to the backup bucket. Never overwrites.

    Only object read/write and bucket location calls are made on the
    upload path, so a role without s3:ListBucket can run backups.
    """

    def __init__(self, bucket: str, region: Optional[str] = None, upload_config=None,
                 s3_client=None, verify_bucket: bool = True):
        """
        Args:
            bucket: Backup bucket name
            region: AWS region (default: from the environment)
            upload_config: UploadConfig with transfer settings (default: defaults)
            s3_client: Pre-built S3 client
            verify_bucket: Check bucket access on construction
        """
        self.bucket = bucket
        self.region = region
        self.upload_config = upload_config or UploadConfig()

        if s3_client is None:
            boto_config = BotoConfig(
                region_name=region,
                retries={'max_attempts': 3, 'mode': 'adaptive'}
            )
            s3_client = boto3.client('s3', config=boto_config)
        self.s3_client = s3_client

        self.multipart_threshold = self.upload_config.multipart_threshold_mb * MB
        self.multipart_chunksize = self.upload_config.multipart_chunksize_mb * MB

        if verify_bucket:
            self._verify_bucket_access()

    def _verify_bucket_access(self):
        """Verify the S3 bucket exists and is reachable."""
        try:
            self.s3_client.get_bucket_location(Bucket=self.bucket)
            logger.info(f"✓ Verified access to bucket: {self.bucket}")
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in ('404', 'NoSuchBucket'):
                raise UploadError(f"Bucket not found: {self.bucket}") from e
            elif error_code in ('403', 'AccessDenied'):
                raise UploadError(f"Access denied to bucket: {self.bucket}") from e
            raise UploadError(f"Error accessing bucket {self.bucket}: {e}") from e
        except BotoCoreError as e:
            raise UploadError(f"Error accessing bucket {self.bucket}: {e}") from e

    def upload_archive(self, archive_path: Path, s3_key: str,
                       metadata: Optional[Dict[str, str]] = None) -> UploadResult:
        """Upload an archive to a new key.

        The write is conditional on the key not existing, so S3 rejects it
        when another run has already stored the same key.

        Raises:
            UploadError: if the key already exists or the upload fails
        """
        archive_path = Path(archive_path)
        if not archive_path.exists():
            raise UploadError(f"Archive not found: {archive_path}")

        file_size = archive_path.stat().st_size
        extra_args = {
            'ContentType': 'application/zip',
            'Metadata': {
                'created_by': CREATED_BY,
                'original_size': str(file_size),
                **{k: str(v) for k, v in (metadata or {}).items()}
            }
        }

        logger.info("Uploading archive to S3...")
        logger.info(f"  Source: {archive_path}")
        logger.info(f"  Destination: s3://{self.bucket}/{s3_key}")
        logger.info(f"  Size: {format_bytes(file_size)}")

        start_time = datetime.now()
        try:
            with tqdm(total=file_size, unit='B', unit_scale=True, desc="  Uploading",
                      leave=False, disable=not self.upload_config.show_progress) as pbar:
                if file_size < self.multipart_threshold:
                    response = self._put_archive(archive_path, s3_key, extra_args)
                    pbar.update(file_size)
                else:
                    response = self._multipart_upload(archive_path, s3_key, file_size, extra_args, pbar)
        except ClientError as e:
            if _error_code(e) in KEY_EXISTS_CODES:
                raise UploadError(f"Refusing to overwrite existing backup: s3://{self.bucket}/{s3_key}") from e
            raise UploadError(f"S3 upload failed for {s3_key}: {e}") from e
        except (BotoCoreError, OSError) as e:
            raise UploadError(f"S3 upload failed for {s3_key}: {e}") from e

        upload_time = (datetime.now() - start_time).total_seconds()
        upload_rate = file_size / upload_time / MB if upload_time > 0 else 0

        result = UploadResult(
            s3_key=s3_key,
            size=file_size,
            etag=response.get('ETag', '').strip('"') or None,
            version_id=response.get('VersionId'),
            upload_time=upload_time
        )

        logger.info("✓ Upload complete")
        logger.info(f"  ETag: {result.etag}")
        if result.version_id:
            logger.info(f"  Version: {result.version_id}")
        logger.info(f"  Time: {upload_time:.1f}s ({upload_rate:.2f} MB/s)")

        return result

    def _put_archive(self, archive_path: Path, s3_key: str, extra_args: dict) -> dict:
        with open(archive_path, 'rb') as f:
            return self.s3_client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=f,
                IfNoneMatch='*',
                **extra_args
            )

    def _multipart_upload(self, archive_path: Path, s3_key: str, file_size: int,
                          extra_args: dict, pbar) -> dict:
        """Upload in parts; the completing request carries the no-overwrite condition."""
        upload_id = self.s3_client.create_multipart_upload(
            Bucket=self.bucket, Key=s3_key, **extra_args
        )['UploadId']

        def upload_part(part_number: int, offset: int) -> dict:
            with open(archive_path, 'rb') as f:
                f.seek(offset)
                data = f.read(self.multipart_chunksize)
            response = self.s3_client.upload_part(
                Bucket=self.bucket,
                Key=s3_key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data
            )
            pbar.update(len(data))
            return {'PartNumber': part_number, 'ETag': response['ETag']}

        offsets = list(range(0, file_size, self.multipart_chunksize))
        workers = self.upload_config.max_concurrency if self.upload_config.use_threads else 1
        logger.debug(f"Multipart upload {upload_id}: {len(offsets)} parts, {workers} worker(s)")

        try:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                parts = list(executor.map(upload_part, range(1, len(offsets) + 1), offsets))

            return self.s3_client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts},
                IfNoneMatch='*'
            )
        except (ClientError, BotoCoreError, OSError):
            self._abort_multipart_upload(s3_key, upload_id)
            raise

    def _abort_multipart_upload(self, s3_key: str, upload_id: str):
        try:
            self.s3_client.abort_multipart_upload(Bucket=self.bucket, Key=s3_key, UploadId=upload_id)
            logger.info(f"Aborted multipart upload {upload_id}")
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not abort multipart upload {upload_id}: {e}")

    def verify_upload(self, s3_key: str, expected_size: int) -> VerifyResult:
        """Verify an uploaded archive exists and has the expected size."""
        try:
            response = self.s3_client.head_object(Bucket=self.bucket, Key=s3_key)
        except ClientError as e:
            if _error_code(e) in ('404', 'NoSuchKey', 'NotFound'):
                return VerifyResult(False, s3_key, expected_size=expected_size,
                                    error='Archive not found in S3')
            return VerifyResult(False, s3_key, expected_size=expected_size, error=str(e))

        s3_size = response['ContentLength']
        if s3_size != expected_size:
            return VerifyResult(False, s3_key, s3_size, expected_size,
                                error=f"Size mismatch: S3 has {s3_size} bytes, expected {expected_size}")
        return VerifyResult(True, s3_key, s3_size, expected_size)

    def list_backups(self, repository_name: str, reference_name: Optional[str] = None) -> List[dict]:
        """List backup archives for a repository, newest first.

        Needs s3:ListBucket, unlike the upload path.
        """
        prefix = f"{repository_name}/"
        if reference_name:
            prefix += f"{reference_name}/"

        backups = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get('Contents', []):
                    key = obj['Key']
                    if not key.endswith('.zip'):
                        continue
                    backups.append({
                        's3_key': key,
                        'reference': key[len(repository_name) + 1:].rsplit('/', 1)[0],
                        'archive': key.rsplit('/', 1)[-1],
                        'size': obj['Size'],
                        'last_modified': obj['LastModified'],
                        'storage_class': obj.get('StorageClass', 'STANDARD'),
                    })
        except (ClientError, BotoCoreError) as e:
            raise UploadError(f"Error listing backups under {prefix}: {e}") from e

        backups.sort(key=lambda b: b['last_modified'], reverse=True)
        return backups

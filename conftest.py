"""Shared fixtures: in-memory S3 client, fake fetcher, sample events."""

import hashlib
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from config import Config
from repo_backup.errors import FetchError
from repo_backup.events import BackupEvent

BUCKET = 'test-backups'


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class FakePaginator:
    def __init__(self, client):
        self.client = client

    def paginate(self, Bucket, Prefix=''):
        contents = [
            {
                'Key': key,
                'Size': len(obj['Body']),
                'LastModified': obj['LastModified'],
                'StorageClass': 'STANDARD',
            }
            for (bucket, key), obj in sorted(self.client.objects.items())
            if bucket == Bucket and key.startswith(Prefix)
        ]
        yield {'Contents': contents}


class FakeS3Client:
    """The subset of the S3 client API the backup code uses.

    With list_bucket_allowed=False, head_object answers 403 for missing keys
    the way S3 does for a role without s3:ListBucket.
    """

    def __init__(self, buckets=(BUCKET,), list_bucket_allowed=True):
        self.buckets = set(buckets)
        self.list_bucket_allowed = list_bucket_allowed
        self.objects = {}
        self.lifecycle = {}
        self.multipart = {}
        self.aborted = []
        self.fail_uploads = False
        self.upload_calls = 0
        self.before_write = None
        self._lock = threading.Lock()

    def get_bucket_location(self, Bucket):
        if Bucket not in self.buckets:
            raise client_error('NoSuchBucket', 'GetBucketLocation')
        return {'LocationConstraint': 'eu-west-1'}

    def head_object(self, Bucket, Key, **kwargs):
        with self._lock:
            obj = self.objects.get((Bucket, Key))
        if obj is None:
            raise client_error('404' if self.list_bucket_allowed else '403', 'HeadObject')
        return {
            'ContentLength': len(obj['Body']),
            'ETag': f'"{hashlib.md5(obj["Body"]).hexdigest()}"',
            'LastModified': obj['LastModified'],
            'Metadata': obj['Metadata'],
            'ContentType': obj['ContentType'],
        }

    def _start_write(self, Bucket, operation):
        with self._lock:
            self.upload_calls += 1
        if self.fail_uploads:
            raise client_error('AccessDenied', operation)
        if Bucket not in self.buckets:
            raise client_error('NoSuchBucket', operation)
        if self.before_write:
            self.before_write()

    def _store(self, Bucket, Key, body, content_type, metadata, if_none_match, operation):
        with self._lock:
            if if_none_match == '*' and (Bucket, Key) in self.objects:
                raise client_error('PreconditionFailed', operation)
            self.objects[(Bucket, Key)] = {
                'Body': body,
                'Metadata': metadata or {},
                'ContentType': content_type,
                'LastModified': datetime.now(timezone.utc),
            }
        return {'ETag': f'"{hashlib.md5(body).hexdigest()}"'}

    def put_object(self, Bucket, Key, Body, IfNoneMatch=None, ContentType=None, Metadata=None):
        body = Body.read() if hasattr(Body, 'read') else bytes(Body)
        self._start_write(Bucket, 'PutObject')
        return self._store(Bucket, Key, body, ContentType, Metadata, IfNoneMatch, 'PutObject')

    def create_multipart_upload(self, Bucket, Key, ContentType=None, Metadata=None):
        if Bucket not in self.buckets:
            raise client_error('NoSuchBucket', 'CreateMultipartUpload')
        with self._lock:
            upload_id = f'upload-{len(self.multipart) + len(self.aborted) + 1}'
            self.multipart[upload_id] = {
                'Key': Key, 'ContentType': ContentType, 'Metadata': Metadata, 'Parts': {}
            }
        return {'UploadId': upload_id}

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        with self._lock:
            self.multipart[UploadId]['Parts'][PartNumber] = Body
        return {'ETag': f'"{hashlib.md5(Body).hexdigest()}"'}

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload, IfNoneMatch=None):
        self._start_write(Bucket, 'CompleteMultipartUpload')
        with self._lock:
            upload = self.multipart[UploadId]
            body = b''.join(upload['Parts'][p['PartNumber']] for p in MultipartUpload['Parts'])
        response = self._store(Bucket, Key, body, upload['ContentType'], upload['Metadata'],
                               IfNoneMatch, 'CompleteMultipartUpload')
        with self._lock:
            del self.multipart[UploadId]
        return response

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        with self._lock:
            self.multipart.pop(UploadId, None)
            self.aborted.append(UploadId)

    def get_paginator(self, operation_name):
        assert operation_name == 'list_objects_v2'
        return FakePaginator(self)

    def put_bucket_lifecycle_configuration(self, Bucket, LifecycleConfiguration):
        if Bucket not in self.buckets:
            raise client_error('NoSuchBucket', 'PutBucketLifecycleConfiguration')
        self.lifecycle[Bucket] = LifecycleConfiguration

    def get_bucket_lifecycle_configuration(self, Bucket):
        if Bucket not in self.lifecycle:
            raise client_error('NoSuchLifecycleConfiguration', 'GetBucketLifecycleConfiguration')
        return dict(self.lifecycle[Bucket])

    def delete_bucket_lifecycle(self, Bucket):
        self.lifecycle.pop(Bucket, None)

    def get_bucket_versioning(self, Bucket):
        return {'Status': 'Enabled'}

    def get_bucket_encryption(self, Bucket):
        return {
            'ServerSideEncryptionConfiguration': {
                'Rules': [{'ApplyServerSideEncryptionByDefault': {'SSEAlgorithm': 'AES256'}}]
            }
        }

    def get_public_access_block(self, Bucket):
        return {
            'PublicAccessBlockConfiguration': {
                'BlockPublicAcls': True,
                'IgnorePublicAcls': True,
                'BlockPublicPolicy': True,
                'RestrictPublicBuckets': True,
            }
        }

    def keys(self, bucket=BUCKET):
        return sorted(key for (b, key) in self.objects if b == bucket)


class FakeFetcher:
    """Writes a small working tree instead of running git."""

    def __init__(self, error=None):
        self.error = error
        self.fetched = []

    def fetch(self, event, destination_root):
        if self.error is not None:
            raise self.error
        destination = Path(destination_root) / event.repository_name
        (destination / '.git').mkdir(parents=True)
        (destination / '.git' / 'HEAD').write_text('ref: refs/heads/main\n')
        (destination / 'README.md').write_text(f"# {event.repository_name}\n")
        (destination / 'src').mkdir()
        (destination / 'src' / 'app.py').write_text(f"COMMIT = '{event.commit_id}'\n")
        self.fetched.append(event)
        return destination


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def restricted_s3_client():
    """S3 client for a role without s3:ListBucket."""
    return FakeS3Client(list_bucket_allowed=False)


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def config(tmp_path):
    return Config(
        bucket={'name': BUCKET},
        archive={'temp_dir': str(tmp_path / 'work')},
        upload={'show_progress': False},
    )


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)


@pytest.fixture
def backup_event():
    return BackupEvent(
        repository_name='R',
        reference_name='main',
        commit_id='abc123',
        region='eu-west-1',
        account_id='123456789012',
    )


@pytest.fixture
def make_codecommit_event():
    """Factory for raw CodeCommit state change events."""
    def _make(event='referenceUpdated', reference_type='branch', reference_name='main',
              commit_id='abc123', repository_name='my-repo'):
        return {
            'version': '0',
            'id': '01234567-0123-0123-0123-012345678901',
            'detail-type': 'CodeCommit Repository State Change',
            'source': 'aws.codecommit',
            'account': '123456789012',
            'time': '2024-05-01T12:30:45Z',
            'region': 'eu-west-1',
            'resources': [f'arn:aws:codecommit:eu-west-1:123456789012:{repository_name}'],
            'detail': {
                'callerUserArn': 'arn:aws:iam::123456789012:user/dev',
                'commitId': commit_id,
                'event': event,
                'referenceFullName': f'refs/heads/{reference_name}',
                'referenceName': reference_name,
                'referenceType': reference_type,
                'repositoryId': '12345678-1234-5678-abcd-12345678abcd',
                'repositoryName': repository_name,
            },
        }
    return _make


@pytest.fixture
def failing_fetcher():
    return FakeFetcher(error=FetchError("git clone failed (exit 128): repository not found"))

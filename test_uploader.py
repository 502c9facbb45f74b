"""Tests for the S3 uploader."""

import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from config import UploadConfig
from repo_backup.errors import UploadError
from repo_backup.uploader import S3Uploader

BUCKET = 'test-backups'


@pytest.fixture
def uploader(s3_client):
    return S3Uploader(BUCKET, upload_config=UploadConfig(show_progress=False), s3_client=s3_client)


@pytest.fixture
def archive_file(tmp_path):
    path = tmp_path / 'abc123_2024-05-01-12-30-45.zip'
    path.write_bytes(b'PK\x05\x06' + b'\x00' * 18)
    return path


def test_missing_bucket_is_an_upload_error(s3_client):
    with pytest.raises(UploadError, match='Bucket not found'):
        S3Uploader('other-bucket', s3_client=s3_client)


def test_access_denied_is_an_upload_error():
    client = MagicMock()
    client.get_bucket_location.side_effect = ClientError(
        {'Error': {'Code': 'AccessDenied', 'Message': 'Access Denied'}}, 'GetBucketLocation'
    )

    with pytest.raises(UploadError, match='Access denied'):
        S3Uploader(BUCKET, s3_client=client)


def test_upload_archive(uploader, s3_client, archive_file):
    key = 'R/main/abc123_2024-05-01-12-30-45.zip'
    result = uploader.upload_archive(archive_file, key, metadata={'commit_id': 'abc123'})

    assert s3_client.keys() == [key]
    stored = s3_client.objects[(BUCKET, key)]
    assert stored['Body'] == archive_file.read_bytes()
    assert stored['ContentType'] == 'application/zip'
    assert stored['Metadata']['commit_id'] == 'abc123'
    assert stored['Metadata']['created_by'] == 'repo-backup'
    assert result.s3_key == key
    assert result.size == archive_file.stat().st_size
    assert result.etag


def test_upload_refuses_to_overwrite(uploader, s3_client, archive_file):
    key = 'R/main/abc123_2024-05-01-12-30-45.zip'
    uploader.upload_archive(archive_file, key)
    original = s3_client.objects[(BUCKET, key)]['Body']

    archive_file.write_bytes(b'different')
    with pytest.raises(UploadError, match='Refusing to overwrite'):
        uploader.upload_archive(archive_file, key)

    assert s3_client.objects[(BUCKET, key)]['Body'] == original


def test_upload_failure_is_an_upload_error(uploader, s3_client, archive_file):
    s3_client.fail_uploads = True

    with pytest.raises(UploadError, match='S3 upload failed'):
        uploader.upload_archive(archive_file, 'R/main/abc.zip')
    assert s3_client.keys() == []


def test_upload_missing_archive(uploader, tmp_path):
    with pytest.raises(UploadError, match='Archive not found'):
        uploader.upload_archive(tmp_path / 'missing.zip', 'R/main/missing.zip')


def test_verify_upload(uploader, archive_file):
    key = 'R/main/abc.zip'
    uploader.upload_archive(archive_file, key)

    assert uploader.verify_upload(key, archive_file.stat().st_size).verified

    mismatch = uploader.verify_upload(key, 1)
    assert not mismatch.verified
    assert 'Size mismatch' in mismatch.error

    missing = uploader.verify_upload('R/main/other.zip', 1)
    assert not missing.verified


def test_list_backups(uploader, archive_file):
    uploader.upload_archive(archive_file, 'R/main/a_2024-05-01-12-00-00.zip')
    uploader.upload_archive(archive_file, 'R/feature/x/b_2024-05-01-13-00-00.zip')
    uploader.upload_archive(archive_file, 'Other/main/c_2024-05-01-14-00-00.zip')

    all_backups = uploader.list_backups('R')
    assert {b['s3_key'] for b in all_backups} == {
        'R/main/a_2024-05-01-12-00-00.zip',
        'R/feature/x/b_2024-05-01-13-00-00.zip',
    }
    assert {b['reference'] for b in all_backups} == {'main', 'feature/x'}

    main_only = uploader.list_backups('R', 'main')
    assert [b['archive'] for b in main_only] == ['a_2024-05-01-12-00-00.zip']


def test_upload_without_list_bucket_permission(s3_client, archive_file):
    s3_client.list_bucket_allowed = False
    uploader = S3Uploader(BUCKET, upload_config=UploadConfig(show_progress=False), s3_client=s3_client)
    key = 'R/main/abc123_2024-05-01-12-30-45.zip'

    result = uploader.upload_archive(archive_file, key)

    assert s3_client.keys() == [key]
    assert result.etag
    assert uploader.verify_upload(key, archive_file.stat().st_size).verified


def test_concurrent_uploads_to_same_key_store_one_object(uploader, s3_client, archive_file, tmp_path):
    key = 'R/main/abc123_2024-05-01-12-30-45.zip'
    second_archive = tmp_path / 'second.zip'
    second_archive.write_bytes(b'second archive')

    barrier = threading.Barrier(2)
    s3_client.before_write = barrier.wait
    results, errors = [], []

    def upload(path):
        try:
            results.append(uploader.upload_archive(path, key))
        except UploadError as e:
            errors.append(e)

    threads = [threading.Thread(target=upload, args=(path,)) for path in (archive_file, second_archive)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert s3_client.upload_calls == 2
    assert len(results) == 1
    assert len(errors) == 1
    assert 'Refusing to overwrite' in str(errors[0])
    assert s3_client.keys() == [key]


def test_large_archive_uses_multipart_upload(s3_client, tmp_path):
    archive = tmp_path / 'large.zip'
    archive.write_bytes(bytes(range(256)) * (10 * 1024))
    uploader = S3Uploader(
        BUCKET,
        upload_config=UploadConfig(multipart_threshold_mb=1, multipart_chunksize_mb=1, show_progress=False),
        s3_client=s3_client
    )
    key = 'R/main/big_2024-05-01-12-30-45.zip'

    result = uploader.upload_archive(archive, key, metadata={'commit_id': 'big'})

    stored = s3_client.objects[(BUCKET, key)]
    assert stored['Body'] == archive.read_bytes()
    assert stored['Metadata']['commit_id'] == 'big'
    assert result.size == archive.stat().st_size
    assert s3_client.multipart == {}


def test_multipart_upload_refuses_existing_key_and_aborts(s3_client, tmp_path):
    archive = tmp_path / 'large.zip'
    archive.write_bytes(b'\x01' * (2 * 1024 * 1024))
    uploader = S3Uploader(
        BUCKET,
        upload_config=UploadConfig(multipart_threshold_mb=1, multipart_chunksize_mb=1, show_progress=False),
        s3_client=s3_client
    )
    key = 'R/main/big_2024-05-01-12-30-45.zip'
    uploader.upload_archive(archive, key)

    with pytest.raises(UploadError, match='Refusing to overwrite'):
        uploader.upload_archive(archive, key)

    assert len(s3_client.aborted) == 1
    assert s3_client.multipart == {}

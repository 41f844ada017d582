"""
Unit tests for the S3 storage client (archivist/backup/storage.py).
"""

import io
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from archivist.backup.storage import S3Storage, StorageError, create_storage


class BrokenStream(io.RawIOBase):
    """Stream whose reads always fail."""

    def readable(self):
        return True

    def read(self, size=-1):
        raise OSError("read failed")


class TestS3Storage:
    """Test S3Storage for AWS S3 operations."""

    def test_upload_stream_with_metadata(self, storage, mock_s3):
        """Test a stream is uploaded with its fingerprint metadata."""
        key = storage.upload_stream(io.BytesIO(b'archive bytes'), '2024-01-01 00:00.tar.gz', {'fingerprint': 'abc'})

        assert key == '2024-01-01 00:00.tar.gz'
        obj = mock_s3.Object('test-bucket', key)
        assert obj.get()['Body'].read() == b'archive bytes'
        assert obj.metadata == {'fingerprint': 'abc'}

    def test_upload_stream_uses_prefix(self, mock_s3):
        """Test the key prefix is prepended to archive names."""
        storage = S3Storage(bucket_name='test-bucket', prefix='site/')

        key = storage.upload_stream(io.BytesIO(b'data'), '2024-01-01 00:00.tar.gz')

        assert key == 'site/2024-01-01 00:00.tar.gz'
        assert [o['Key'] for o in storage.list_objects()] == [key]

    def test_upload_large_stream_multipart(self, storage, mock_s3):
        """Test streams above the chunk size go through multipart upload."""
        data = b'x' * (S3Storage.CHUNK_SIZE + 1024)

        storage.upload_stream(io.BytesIO(data), 'big.tar.gz', {'fingerprint': 'big'})

        obj = mock_s3.Object('test-bucket', 'big.tar.gz')
        assert obj.content_length == len(data)
        assert obj.metadata['fingerprint'] == 'big'

    def test_upload_missing_bucket(self, mock_s3):
        """Test uploading to a missing bucket raises StorageError."""
        storage = S3Storage(bucket_name='missing-bucket')

        with pytest.raises(StorageError):
            storage.upload_stream(io.BytesIO(b'data'), 'x.tar.gz')

    def test_upload_stream_read_error(self, storage, bucket_names):
        """Test a failing source stream leaves no object behind."""
        with pytest.raises(StorageError):
            storage.upload_stream(BrokenStream(), 'broken.tar.gz')

        assert bucket_names() == []

    def test_get_metadata(self, storage, put_archive):
        """Test reading metadata of an archive."""
        put_archive('2024-01-01 00:00', fingerprint='abc')

        assert storage.get_metadata('2024-01-01 00:00.tar.gz') == {'fingerprint': 'abc'}

    def test_get_metadata_missing_object(self, storage):
        """Test reading metadata of a missing archive raises StorageError."""
        with pytest.raises(StorageError, match="head failed"):
            storage.get_metadata('nope.tar.gz')

    def test_delete(self, storage, put_archive, bucket_names):
        """Test deleting an archive."""
        put_archive('2024-01-01 00:00')

        storage.delete('2024-01-01 00:00.tar.gz')

        assert bucket_names() == []

    def test_delete_client_error(self, storage):
        """Test delete failures surface as StorageError."""
        error = ClientError({'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'DeleteObject')

        with patch.object(storage.s3_client, 'delete_object', side_effect=error):
            with pytest.raises(StorageError, match="AccessDenied"):
                storage.delete('2024-01-01 00:00.tar.gz')

    def test_list_objects(self, storage, put_archive):
        """Test listing returns key, size and modification time."""
        put_archive('2024-01-01 00:00', body=b'12345')

        objects = storage.list_objects()

        assert len(objects) == 1
        assert objects[0]['Key'] == '2024-01-01 00:00.tar.gz'
        assert objects[0]['Size'] == 5
        assert 'LastModified' in objects[0]

    def test_list_objects_missing_bucket(self, mock_s3):
        """Test listing a missing bucket raises StorageError."""
        storage = S3Storage(bucket_name='missing-bucket')

        with pytest.raises(StorageError, match="list failed"):
            storage.list_objects()

    def test_connection(self, storage):
        """Test connection check against an existing bucket."""
        assert storage.test_connection() is True

    def test_connection_missing_bucket(self, mock_s3):
        """Test connection check against a missing bucket."""
        storage = S3Storage(bucket_name='missing-bucket')

        with pytest.raises(StorageError, match="Bucket does not exist"):
            storage.test_connection()

    def test_requires_bucket(self):
        """Test a storage client cannot be built without a bucket."""
        with pytest.raises(StorageError, match="No backup bucket"):
            S3Storage(bucket_name='')


class TestCreateStorage:
    """Test building storage from settings."""

    def test_create_storage(self, settings, mock_s3):
        storage = create_storage(settings)

        assert storage.bucket_name == 'test-bucket'
        assert storage.region == 'us-east-1'
        assert storage.prefix == ''

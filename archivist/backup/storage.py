"""
S3 storage client for backup archives.

Archives are stored flat under an optional key prefix:
{prefix}{YYYY-MM-DD HH:MM}.tar.gz
"""

from typing import BinaryIO, Dict, Optional
import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import ClientError, BotoCoreError


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class S3Storage:
    """
    Handler for archives in an S3 (or S3-compatible) bucket.
    """

    # 10MB parts
    CHUNK_SIZE = 10 * 1024 * 1024

    def __init__(
        self,
        bucket_name: str,
        region: str = 'us-east-1',
        prefix: str = '',
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Credentials fall back to the standard boto3 chain (environment,
        shared config, instance role) when not given.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            prefix: Key prefix archives live under
            access_key: AWS access key ID
            secret_key: AWS secret access key
            endpoint_url: Custom endpoint for S3-compatible services
        """
        if not bucket_name:
            raise StorageError("No backup bucket configured")

        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix
        self.transfer_config = TransferConfig(
            multipart_threshold=self.CHUNK_SIZE,
            multipart_chunksize=self.CHUNK_SIZE
        )

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def key_for(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def upload_stream(self, fileobj: BinaryIO, name: str, metadata: Optional[Dict[str, str]] = None) -> str:
        """
        Stream a readable file object to S3.

        Large streams are sent as a multipart upload in CHUNK_SIZE parts, so
        the archive is never held in memory. A failed multipart upload is
        aborted by the transfer manager and leaves no object behind.

        Args:
            fileobj: Readable binary stream
            name: Archive name
            metadata: Object metadata (e.g. {'fingerprint': ...})

        Returns:
            S3 key of uploaded object

        Raises:
            StorageError: If upload fails
        """
        key = self.key_for(name)

        try:
            self.s3_client.upload_fileobj(
                fileobj,
                self.bucket_name,
                key,
                ExtraArgs={'Metadata': metadata or {}},
                Config=self.transfer_config
            )
            return key

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def get_metadata(self, name: str) -> Dict[str, str]:
        """
        Fetch user metadata of an archive.

        Args:
            name: Archive name

        Returns:
            Metadata dict (keys lower-cased by S3)

        Raises:
            StorageError: If the object cannot be read
        """
        key = self.key_for(name)

        try:
            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return response.get('Metadata', {})
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 head failed for {key} ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to read S3 metadata for {key}: {e}")

    def delete(self, name: str):
        """
        Delete an archive from S3.

        Args:
            name: Archive name

        Raises:
            StorageError: If deletion fails
        """
        key = self.key_for(name)

        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_objects(self) -> list:
        """
        List objects under the configured prefix.

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix):
                if 'Contents' in page:
                    for obj in page['Contents']:
                        objects.append({
                            'Key': obj['Key'],
                            'LastModified': obj['LastModified'],
                            'Size': obj['Size']
                        })

            return objects

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to connect to S3: {e}")


def create_storage(settings) -> S3Storage:
    """Build the storage client described by Settings."""
    return S3Storage(
        bucket_name=settings.backup_bucket,
        region=settings.aws_region,
        prefix=settings.backup_prefix,
        endpoint_url=settings.s3_endpoint_url
    )

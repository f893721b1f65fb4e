"""
S3-compatible Storage Adapter

Low-level blob operations against MinIO (local), R2 or S3. Methods are
synchronous; StorageService runs them in a worker thread under a timeout.
"""
from typing import Any, BinaryIO, Dict, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from buildhost.lib.config import settings
from buildhost.lib.errors import StorageError, StorageUnavailableError

_NOT_FOUND_CODES = ('404', 'NoSuchKey', 'NotFound')
_UNAVAILABLE_ERRORS = (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError)


def get_s3_client():
    """Initialize S3-compatible client."""
    timeout = settings.storage_timeout_seconds
    return boto3.client(
        's3',
        endpoint_url=settings.s3_endpoint,
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        region_name=settings.s3_region,
        config=Config(
            signature_version='s3v4',
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={'max_attempts': 3}
        )
    )


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', '')


class S3StorageAdapter:
    """
    Low-level S3 storage adapter.

    Provides:
    - Presigned URLs for direct client upload and download
    - Object stat (existence + authoritative size)
    - Streaming reads and writes
    """

    def __init__(self, client=None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or settings.s3_bucket

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if _error_code(e) in ('404', 'NoSuchBucket', 'NotFound'):
                self.client.create_bucket(Bucket=self.bucket)
            else:
                raise StorageError(f"Bucket check failed: {e}") from e
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Storage unreachable: {e}") from e

    def presign_upload(self, key: str, content_type: str, expires_in: int) -> str:
        """Generate presigned PUT URL for client-side upload."""
        try:
            return self.client.generate_presigned_url(
                'put_object',
                Params={
                    'Bucket': self.bucket,
                    'Key': key,
                    'ContentType': content_type,
                },
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise StorageError(f"Failed to generate upload URL: {e}") from e

    def presign_download(self, key: str, expires_in: int) -> str:
        """Generate presigned GET URL."""
        try:
            return self.client.generate_presigned_url(
                'get_object',
                Params={
                    'Bucket': self.bucket,
                    'Key': key,
                },
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise StorageError(f"Failed to generate download URL: {e}") from e

    def stat(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Get object metadata.

        Returns None when the object does not exist, otherwise a dict with
        the stored ``size`` in bytes and ``etag``.
        """
        try:
            response = self.client.head_object(
                Bucket=self.bucket,
                Key=key,
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise StorageError(f"Failed to stat {key}: {e}") from e
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Storage unreachable: {e}") from e

        return {
            'size': response['ContentLength'],
            'etag': response.get('ETag', '').strip('"'),
        }

    def open(self, key: str) -> BinaryIO:
        """Open object for streaming read. Caller closes the stream."""
        try:
            response = self.client.get_object(
                Bucket=self.bucket,
                Key=key,
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise FileNotFoundError(f"File not found: {key}") from e
            raise StorageError(f"Download failed: {e}") from e
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Storage unreachable: {e}") from e
        return response['Body']

    def put(self, key: str, body: BinaryIO, content_type: str) -> None:
        """Upload a file object. The object appears atomically once complete."""
        try:
            self.client.upload_fileobj(
                body,
                self.bucket,
                key,
                ExtraArgs={'ContentType': content_type},
            )
        except (ClientError, S3UploadFailedError) as e:
            raise StorageError(f"Upload failed: {e}") from e
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Storage unreachable: {e}") from e

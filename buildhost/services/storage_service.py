"""
Storage Service

High-level storage operations with build-aware paths.
Wraps the S3 adapter with path conventions and per-call timeouts.
"""
import asyncio
import functools
import uuid
from typing import Any, BinaryIO, Dict, Optional

from botocore.exceptions import BotoCoreError, ConnectTimeoutError, ReadTimeoutError
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from urllib3.exceptions import TimeoutError as Urllib3TimeoutError

from buildhost.infra.s3_storage import S3StorageAdapter
from buildhost.lib.config import settings
from buildhost.lib.errors import StorageError, StorageUnavailableError

# Errors a response body can raise partway through a read
_STREAM_ERRORS = (BotoCoreError, Urllib3HTTPError, OSError)
_STREAM_TIMEOUTS = (ReadTimeoutError, ConnectTimeoutError, Urllib3TimeoutError)

UPLOAD_CONTENT_TYPE = "application/octet-stream"
ARCHIVE_CONTENT_TYPE = "application/zip"


class StorageService:
    """
    Build-aware storage service.

    Path conventions:
    - Client uploads: builds/{build_id}/{type}_{sub_type}_{uuid}
    - Generated archives: builds/{build_id}/files/{file_id}
    """

    def __init__(self, adapter=None, timeout: Optional[float] = None):
        self.storage = adapter or S3StorageAdapter()
        self.timeout = timeout if timeout is not None else settings.storage_timeout_seconds

    async def _call(self, fn, *args, **kwargs):
        """Run a blocking adapter call in a thread, bounded by the timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(functools.partial(fn, *args, **kwargs)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise StorageUnavailableError(
                f"storage did not respond within {self.timeout:g}s"
            ) from e

    # --- Path Generation ---

    def get_build_file_path(self, build_id: int, file_type: str, sub_type: str) -> str:
        """Unique per call, so several files of one declared type never collide."""
        return f"builds/{build_id}/{file_type}_{sub_type}_{uuid.uuid4()}"

    def get_archive_path(self, build_id: int, file_id: int) -> str:
        return f"builds/{build_id}/files/{file_id}"

    # --- Upload Operations ---

    async def create_upload_url(
        self,
        build_id: int,
        file_type: str,
        sub_type: str,
        expires_in: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Allocate a storage path and a presigned URL for direct client upload.

        Returns:
            {
                'upload_url': presigned URL for PUT request,
                'storage_path': where the file will be stored,
                'expires_in': seconds until URL expires,
                'upload_headers': headers the client must send
            }
        """
        expires_in = expires_in or settings.upload_url_ttl_seconds
        storage_path = self.get_build_file_path(build_id, file_type, sub_type)

        upload_url = await self._call(
            self.storage.presign_upload,
            storage_path,
            UPLOAD_CONTENT_TYPE,
            expires_in,
        )

        return {
            'upload_url': upload_url,
            'storage_path': storage_path,
            'expires_in': expires_in,
            'upload_headers': {'Content-Type': UPLOAD_CONTENT_TYPE},
        }

    async def stat(self, storage_path: str) -> Optional[Dict[str, Any]]:
        """Return object metadata, or None when nothing landed at the path."""
        return await self._call(self.storage.stat, storage_path)

    async def put(self, storage_path: str, body: BinaryIO, content_type: str) -> None:
        """Server-side upload. Not bounded by the request timeout; archives can be large."""
        await asyncio.to_thread(self.storage.put, storage_path, body, content_type)

    # --- Download Operations ---

    async def get_download_url(self, storage_path: str, expires_in: Optional[int] = None) -> str:
        return await self._call(
            self.storage.presign_download,
            storage_path,
            expires_in or settings.download_url_ttl_seconds,
        )

    async def copy_into(self, storage_path: str, dest: BinaryIO) -> int:
        """
        Stream an object into a writable file object. Returns bytes copied.

        A body that breaks off mid-read raises StorageError, or
        StorageUnavailableError when the read timed out.
        """
        stream = await self._call(self.storage.open, storage_path)

        def _copy() -> int:
            copied = 0
            try:
                while True:
                    chunk = stream.read(1024 * 1024)
                    if not chunk:
                        break
                    dest.write(chunk)
                    copied += len(chunk)
            except _STREAM_TIMEOUTS as e:
                raise StorageUnavailableError(f"Read of {storage_path} timed out: {e}") from e
            except _STREAM_ERRORS as e:
                raise StorageError(f"Read of {storage_path} failed after {copied} bytes: {e}") from e
            finally:
                stream.close()
            return copied

        return await asyncio.to_thread(_copy)


storage_service: Optional[StorageService] = None


async def get_storage() -> StorageService:
    """FastAPI dependency for storage service."""
    global storage_service
    if storage_service is None:
        storage_service = StorageService()
    return storage_service

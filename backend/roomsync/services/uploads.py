import asyncio
import logging
import os
import re
import time
from typing import Optional

from pydantic import BaseModel

from roomsync.models.room import MediaKind, MediaRef

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 20 * 1024 * 1024 # 20MB


class UploadError(Exception):
    pass


class UploadTooLarge(UploadError):
    pass


class StoredUpload(BaseModel):
    url: str
    original_name: str

    def media_ref(self) -> MediaRef:
        return MediaRef(kind=MediaKind.FILE, value=self.url)


def sanitize_filename(name: str) -> str:
    safe = re.sub(r"[^a-z0-9.]", "_", name, flags=re.IGNORECASE).lower()
    return safe.lstrip(".") or "upload"


class UploadStore:
    """
    Stores uploaded media on local disk and serves them under `url_prefix`.

    Room state only ever sees the returned url, as an opaque file media ref.
    """

    def __init__(self, directory: str, url_prefix: str = "/uploads", max_bytes: int = DEFAULT_MAX_BYTES):
        self.directory = os.path.abspath(directory)
        self.url_prefix = "/" + url_prefix.strip("/")
        self.max_bytes = max_bytes
        os.makedirs(self.directory, exist_ok=True)

    def _path_for(self, url: str) -> Optional[str]:
        if not url.startswith(self.url_prefix + "/"):
            return None
        filename = url[len(self.url_prefix) + 1:]
        # Only plain file names directly inside the storage directory
        if not filename or filename != os.path.basename(filename) or filename in (".", ".."):
            return None
        return os.path.join(self.directory, filename)

    def owns(self, media_ref: Optional[MediaRef]) -> bool:
        if media_ref is None or media_ref.kind != MediaKind.FILE:
            return False
        return self._path_for(media_ref.value) is not None

    def _write(self, filename: str, data: bytes):
        with open(os.path.join(self.directory, filename), "wb") as f:
            f.write(data)

    async def save(self, original_name: str, data: bytes) -> StoredUpload:
        if not data:
            raise UploadError("No file uploaded")
        if len(data) > self.max_bytes:
            raise UploadTooLarge(f"File exceeds {self.max_bytes // (1024 * 1024)} MB limit")

        # Timestamp prefix keeps same-named uploads apart
        filename = f"{int(time.time() * 1000)}-{sanitize_filename(original_name or 'upload')}"
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, filename, data)
        logger.info(f"[Upload] File received: {filename}")
        return StoredUpload(url=f"{self.url_prefix}/{filename}", original_name=original_name or filename)

    async def release(self, media_ref: Optional[MediaRef]) -> bool:
        """Best-effort delete of an uploaded file. Never raises."""
        if not self.owns(media_ref):
            return False
        path = self._path_for(media_ref.value)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, os.remove, path)
        except OSError as e:
            logger.error(f"[Cleanup] Error deleting file {path}: {e}")
            return False
        logger.info(f"[Cleanup] Deleted file: {path}")
        return True

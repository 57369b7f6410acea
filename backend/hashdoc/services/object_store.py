"""Object store abstraction. Local filesystem backend with HMAC-signed URLs."""
import asyncio
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

import aiofiles
import aiofiles.os

from hashdoc.config import settings
from hashdoc.errors import InvalidObjectKey, ObjectKeyConflict, ObjectStoreError
from hashdoc.schemas.file import RetrievalHandle
from hashdoc.services.hashing import ByteSource, DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)


class ObjectStoreClient(ABC):
    """Durable key -> bytes storage.

    ``put`` never overwrites: an existing key raises ``ObjectKeyConflict``.
    A key the store cannot hold raises ``InvalidObjectKey``. Every other
    failure raises ``ObjectStoreError``.
    """

    @abstractmethod
    async def put(self, key: str, source: ByteSource, *, content_type: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove the object at ``key``. Removing a missing key is not an error."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def sign(self, key: str, ttl_seconds: int) -> RetrievalHandle:
        """Issue a read-only URL for ``key`` valid for ``ttl_seconds``."""


class LocalObjectStore(ObjectStoreClient):
    """Objects stored as plain files under ``<base_path>/<bucket>``."""

    def __init__(
        self,
        base_path: str,
        bucket: str,
        secret: str,
        public_base_url: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if not secret:
            raise ValueError("SIGNING_SECRET not set. Cannot sign retrieval URLs.")
        self.root = Path(base_path) / bucket
        self.root.mkdir(parents=True, exist_ok=True)
        self.bucket = bucket
        self._secret = secret.encode("utf-8")
        self.public_base_url = public_base_url.rstrip("/")
        self.chunk_size = chunk_size

    def path_for(self, key: str) -> Path:
        """Resolve ``key`` to a file path. Keys are flat file names."""
        if not key or key in (".", "..") or any(c in key for c in ("/", "\\", "\x00")):
            raise InvalidObjectKey(key)
        return self.root / key

    async def put(self, key: str, source: ByteSource, *, content_type: Optional[str] = None) -> None:
        path = self.path_for(key)
        try:
            # "xb" fails atomically if the file is already there
            async with aiofiles.open(path, "xb") as f:
                if isinstance(source, (bytes, bytearray, memoryview)):
                    await f.write(source)
                else:
                    while True:
                        chunk = await asyncio.to_thread(source.read, self.chunk_size)
                        if not chunk:
                            break
                        await f.write(chunk)
        except FileExistsError:
            # Raised by the open itself; the existing object is left alone
            raise ObjectKeyConflict(key)
        except Exception as e:
            await self._discard_partial(path)
            raise ObjectStoreError(f"Write failed for object {key!r}: {e}") from e

        logger.info(f"Stored object {key} in bucket {self.bucket} (content type: {content_type or 'unknown'})")

    async def remove(self, key: str) -> None:
        path = self.path_for(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Object {key} already absent")
            return
        except OSError as e:
            raise ObjectStoreError(f"Cannot remove object {key!r}: {e}") from e
        logger.info(f"Removed object {key} from bucket {self.bucket}")

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self.path_for(key))

    async def sign(self, key: str, ttl_seconds: int) -> RetrievalHandle:
        if ttl_seconds <= 0:
            raise ObjectStoreError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if not await self.exists(key):
            raise ObjectStoreError(f"Object not found: {key!r}")
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._signature(key, expires)})
        url = f"{self.public_base_url}/api/files/download/{quote(key, safe='')}?{query}"
        return RetrievalHandle(
            key=key,
            url=url,
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    def verify(self, key: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        """True if ``signature`` was issued for ``key`` and has not expired."""
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(key, expires), signature)

    def _signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def _discard_partial(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not discard partial object {path}: {e}")


def create_object_store() -> ObjectStoreClient:
    """Build the object store selected by FILE_STORAGE_TYPE."""
    if settings.FILE_STORAGE_TYPE == "local":
        return LocalObjectStore(
            base_path=settings.FILE_STORAGE_PATH,
            bucket=settings.STORAGE_BUCKET,
            secret=settings.SIGNING_SECRET,
            public_base_url=settings.PUBLIC_BASE_URL,
            chunk_size=settings.HASH_CHUNK_SIZE,
        )
    raise ValueError(f"Unknown storage type: {settings.FILE_STORAGE_TYPE}")

"""Upload ingestion: hash, duplicate check, object write, metadata insert.

The object write and the metadata insert go to two independent stores. There
is no transaction spanning them. If the insert fails, the object is removed
again (compensation). If that removal fails too, the blob is orphaned and the
caller gets ``OrphanedObjectWarning`` naming the key.

Concurrent ingests of identical content are not serialized: both may pass the
duplicate check before either inserts, and both then record
``is_duplicate=False``.
"""
import asyncio
import logging
from typing import NoReturn, Optional

from hashdoc.errors import (
    DuplicateCheckFailed,
    HashingFailed,
    InvalidObjectKey,
    InvalidUpload,
    MetadataInsertFailed,
    ObjectAlreadyExists,
    ObjectKeyConflict,
    ObjectWriteFailed,
    OrphanedObjectWarning,
)
from hashdoc.schemas.file import IngestResult
from hashdoc.services.duplicates import DuplicateDetector
from hashdoc.services.hashing import ByteSource, ContentHasher
from hashdoc.services.metadata_store import MetadataStoreClient
from hashdoc.services.object_store import ObjectStoreClient

logger = logging.getLogger(__name__)


class IngestionOrchestrator:
    """Runs one upload as a strictly ordered sequence of awaited steps."""

    def __init__(
        self,
        hasher: ContentHasher,
        detector: DuplicateDetector,
        object_store: ObjectStoreClient,
        metadata_store: MetadataStoreClient,
    ):
        self.hasher = hasher
        self.detector = detector
        self.object_store = object_store
        self.metadata_store = metadata_store

    async def ingest(
        self,
        source: ByteSource,
        filename: str,
        declared_size: Optional[int] = None,
        content_type: Optional[str] = None,
    ) -> IngestResult:
        """Store ``source`` under ``filename`` and record its metadata.

        Returns the content hash and duplicate flag. Raises a subclass of
        ``IngestionError`` naming the failed stage; nothing is left behind
        unless the error is ``OrphanedObjectWarning``.
        """
        if declared_size is not None and declared_size < 0:
            raise InvalidUpload(filename, f"declared size must be non-negative, got {declared_size}")

        # 1. Fingerprint. Off the event loop; large files take a while.
        try:
            size = declared_size if declared_size is not None else self.hasher.measure(source, filename)
            content_hash = await asyncio.to_thread(self.hasher.hash, source, filename)
        except HashingFailed:
            raise
        except Exception as e:
            raise HashingFailed(filename, str(e)) from e
        logger.info(f"Calculated hash for {filename}: {content_hash}")

        # 2. Duplicate check
        try:
            is_duplicate = await self.detector.is_duplicate(content_hash)
        except Exception as e:
            raise DuplicateCheckFailed(filename, str(e)) from e

        # 3. Object write, no overwrite
        try:
            await self.object_store.put(filename, source, content_type=content_type)
        except ObjectKeyConflict as e:
            raise ObjectAlreadyExists(filename, str(e)) from e
        except InvalidObjectKey as e:
            raise InvalidUpload(filename, str(e)) from e
        except Exception as e:
            raise ObjectWriteFailed(filename, str(e)) from e

        # 4. Metadata insert, compensated by removing the object
        try:
            record_id = await self.metadata_store.insert({
                "filename": filename,
                "size": size,
                "hash": content_hash,
                "is_duplicate": is_duplicate,
            })
        except Exception as e:
            await self._compensate(filename, e)

        logger.info(
            f"Ingested {filename} as record {record_id} "
            f"({size} bytes, duplicate={is_duplicate})"
        )
        return IngestResult(
            content_hash=content_hash,
            is_duplicate=is_duplicate,
            filename=filename,
            size=size,
        )

    async def _compensate(self, filename: str, insert_error: Exception) -> NoReturn:
        """Undo the object write after a failed insert. Always raises."""
        try:
            await self.object_store.remove(filename)
        except Exception as remove_error:
            logger.error(
                f"Orphaned object {filename}: metadata insert failed ({insert_error}) "
                f"and compensating remove failed ({remove_error})"
            )
            raise OrphanedObjectWarning(
                filename, f"insert: {insert_error}; remove: {remove_error}"
            ) from remove_error
        logger.warning(f"Metadata insert failed for {filename}; object removed: {insert_error}")
        raise MetadataInsertFailed(filename, str(insert_error)) from insert_error

"""Document listing with a fresh signed URL per record."""
import asyncio
import logging

from hashdoc.errors import ListingFailed, RetrievalHandleUnavailable
from hashdoc.schemas.file import FileRecord, ListedFile
from hashdoc.services.metadata_store import MetadataStoreClient
from hashdoc.services.object_store import ObjectStoreClient

logger = logging.getLogger(__name__)

ONE_YEAR_SECONDS = 31536000


class RetrievalService:
    """Lists every record newest first and signs a URL for each.

    A signing failure only affects its own record, which is returned with
    ``handle=None`` and the failure reason. Nothing is cached between calls.
    """

    def __init__(
        self,
        object_store: ObjectStoreClient,
        metadata_store: MetadataStoreClient,
        ttl_seconds: int = ONE_YEAR_SECONDS,
    ):
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.ttl_seconds = ttl_seconds

    async def list(self) -> list[ListedFile]:
        try:
            rows = await self.metadata_store.list_all("created_at", "desc")
        except Exception as e:
            raise ListingFailed(f"Failed to fetch files: {e}") from e

        records = [FileRecord.from_row(row) for row in rows]
        listed = await asyncio.gather(*(self._with_handle(r) for r in records))
        unavailable = sum(1 for item in listed if not item.available)
        logger.info(f"Listed {len(listed)} file(s), {unavailable} without a retrieval handle")
        return list(listed)

    async def _with_handle(self, record: FileRecord) -> ListedFile:
        try:
            handle = await self.object_store.sign(record.filename, self.ttl_seconds)
        except Exception as e:
            reason = RetrievalHandleUnavailable(record.filename, str(e))
            logger.warning(f"Record {record.id}: {reason}")
            return ListedFile(record=record, unavailable_reason=str(reason))
        return ListedFile(record=record, handle=handle)

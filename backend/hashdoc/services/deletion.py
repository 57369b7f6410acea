"""Document deletion: object first, then metadata.

With this order a partial failure can only leave a metadata row pointing at
a missing object (visible in listings, deletable again), never an object
that no record references.
"""
import logging

from hashdoc.errors import MetadataDeleteFailed, ObjectDeleteFailed
from hashdoc.services.metadata_store import MetadataStoreClient
from hashdoc.services.object_store import ObjectStoreClient

logger = logging.getLogger(__name__)


class DeletionOrchestrator:
    def __init__(self, object_store: ObjectStoreClient, metadata_store: MetadataStoreClient):
        self.object_store = object_store
        self.metadata_store = metadata_store

    async def delete(self, record_id: int, filename: str) -> None:
        try:
            await self.object_store.remove(filename)
        except Exception as e:
            raise ObjectDeleteFailed(record_id, filename, f"Storage delete failed: {e}") from e

        try:
            await self.metadata_store.delete(record_id)
        except Exception as e:
            logger.error(
                f"Orphaned metadata: record {record_id} references removed object {filename}: {e}"
            )
            raise MetadataDeleteFailed(record_id, filename, f"Database delete failed: {e}") from e

        logger.info(f"Deleted record {record_id} and object {filename}")

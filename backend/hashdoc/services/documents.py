"""Document service: ingest, list and delete over one pair of store clients.

Usage in routes:
    from hashdoc.services.documents import get_document_service

    @router.get("")
    async def list_files(service: DocumentService = Depends(get_document_service)):
        return await service.list()
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hashdoc.config import settings
from hashdoc.schemas.file import IngestResult, ListedFile
from hashdoc.services.deletion import DeletionOrchestrator
from hashdoc.services.duplicates import DuplicateDetector
from hashdoc.services.hashing import ByteSource, ContentHasher
from hashdoc.services.ingestion import IngestionOrchestrator
from hashdoc.services.metadata_store import MetadataStoreClient, SqlMetadataStore
from hashdoc.services.object_store import ObjectStoreClient, create_object_store
from hashdoc.services.retrieval import ONE_YEAR_SECONDS, RetrievalService


class DocumentService:
    """Holds no state of its own beyond the injected clients."""

    def __init__(
        self,
        object_store: ObjectStoreClient,
        metadata_store: MetadataStoreClient,
        hasher: Optional[ContentHasher] = None,
        ttl_seconds: int = ONE_YEAR_SECONDS,
    ):
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.ingestion = IngestionOrchestrator(
            hasher or ContentHasher(),
            DuplicateDetector(metadata_store),
            object_store,
            metadata_store,
        )
        self.retrieval = RetrievalService(object_store, metadata_store, ttl_seconds)
        self.deletion = DeletionOrchestrator(object_store, metadata_store)

    async def ingest(
        self,
        source: ByteSource,
        filename: str,
        declared_size: Optional[int] = None,
        content_type: Optional[str] = None,
    ) -> IngestResult:
        return await self.ingestion.ingest(source, filename, declared_size, content_type)

    async def list(self) -> list[ListedFile]:
        return await self.retrieval.list()

    async def delete(self, record_id: int, filename: str) -> None:
        await self.deletion.delete(record_id, filename)


def build_document_service(session_factory: async_sessionmaker[AsyncSession]) -> DocumentService:
    """Wire the configured object store with the SQL metadata store."""
    return DocumentService(
        object_store=create_object_store(),
        metadata_store=SqlMetadataStore(session_factory),
        hasher=ContentHasher(settings.HASH_CHUNK_SIZE),
        ttl_seconds=settings.SIGNED_URL_TTL_SECONDS,
    )


_service: Optional[DocumentService] = None


def get_document_service() -> DocumentService:
    """FastAPI dependency returning the process-wide service."""
    global _service
    if _service is None:
        from hashdoc.database import async_session
        _service = build_document_service(async_session)
    return _service

"""Metadata store abstraction. SQLAlchemy backend over the ``files`` table."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hashdoc.errors import MetadataStoreError
from hashdoc.models.file_record import FileRecordRow

logger = logging.getLogger(__name__)

# Columns callers may write, query and sort by
COLUMNS = ("id", "filename", "size", "hash", "is_duplicate", "created_at")
INSERTABLE = ("filename", "size", "hash", "is_duplicate")


class MetadataStoreClient(ABC):
    """Durable record storage. Records travel as plain dicts keyed by column name.

    Every method raises ``MetadataStoreError`` on failure.
    """

    @abstractmethod
    async def insert(self, values: Mapping[str, Any]) -> int:
        """Insert a record and return its store-assigned id."""

    @abstractmethod
    async def delete(self, record_id: int) -> None:
        """Delete a record. A missing id is an error."""

    @abstractmethod
    async def find_by_field(self, field: str, value: Any, limit: int) -> list[dict]:
        ...

    @abstractmethod
    async def list_all(self, order_by: str = "created_at", direction: str = "desc") -> list[dict]:
        ...

    @abstractmethod
    async def get(self, record_id: int) -> Optional[dict]:
        ...


def check_column(field: str) -> None:
    if field not in COLUMNS:
        raise MetadataStoreError(f"Unknown field: {field!r}")


def check_direction(direction: str) -> None:
    if direction not in ("asc", "desc"):
        raise MetadataStoreError(f"Unknown sort direction: {direction!r}")


def _to_dict(row: FileRecordRow) -> dict:
    return {name: getattr(row, name) for name in COLUMNS}


class SqlMetadataStore(MetadataStoreClient):
    """Each call runs in its own session and commits before returning."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def insert(self, values: Mapping[str, Any]) -> int:
        unknown = set(values) - set(INSERTABLE)
        if unknown:
            raise MetadataStoreError(f"Cannot insert fields: {sorted(unknown)}")
        try:
            async with self.session_factory() as db:
                row = FileRecordRow(**values)
                db.add(row)
                await db.commit()
                await db.refresh(row)
                return row.id
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Insert failed: {e}") from e

    async def delete(self, record_id: int) -> None:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    delete(FileRecordRow).where(FileRecordRow.id == record_id)
                )
                deleted = result.rowcount
                await db.commit()
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Delete of record {record_id} failed: {e}") from e
        if deleted == 0:
            raise MetadataStoreError(f"Record {record_id} not found")

    async def find_by_field(self, field: str, value: Any, limit: int) -> list[dict]:
        check_column(field)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(FileRecordRow)
                    .where(getattr(FileRecordRow, field) == value)
                    .limit(limit)
                )
                return [_to_dict(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Query on {field} failed: {e}") from e

    async def list_all(self, order_by: str = "created_at", direction: str = "desc") -> list[dict]:
        check_column(order_by)
        check_direction(direction)
        column = getattr(FileRecordRow, order_by)
        # created_at has second resolution on some backends; id breaks ties
        if direction == "desc":
            ordering = (column.desc(), FileRecordRow.id.desc())
        else:
            ordering = (column.asc(), FileRecordRow.id.asc())
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(FileRecordRow).order_by(*ordering))
                return [_to_dict(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Listing failed: {e}") from e

    async def get(self, record_id: int) -> Optional[dict]:
        try:
            async with self.session_factory() as db:
                row = await db.get(FileRecordRow, record_id)
                return _to_dict(row) if row else None
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Lookup of record {record_id} failed: {e}") from e

"""File record types and file API response schemas."""
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from hashdoc.errors import MalformedRecord
from hashdoc.schemas.base import CamelModel


class FileRecord(BaseModel):
    """One stored document: a metadata row whose blob lives at ``filename``.

    Rows come back from the metadata store as plain mappings. ``from_row``
    validates them strictly; a mistyped column is an error, not a coercion.
    """

    model_config = {"frozen": True, "strict": True}

    id: int
    filename: str = Field(min_length=1)
    size: int = Field(ge=0)
    content_hash: str = Field(
        pattern=r"^[0-9a-f]{64}$",
        validation_alias=AliasChoices("hash", "content_hash"),
    )
    is_duplicate: bool
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FileRecord":
        try:
            return cls.model_validate(dict(row))
        except (ValidationError, TypeError, ValueError) as e:
            record_id = row.get("id") if isinstance(row, Mapping) else None
            raise MalformedRecord(record_id, str(e)) from e


class RetrievalHandle(BaseModel):
    """Time-limited signed URL for one object. Never persisted."""

    model_config = {"frozen": True}

    key: str
    url: str
    expires_at: datetime


class ListedFile(BaseModel):
    """A record paired with a fresh handle, or with the reason there is none."""

    record: FileRecord
    handle: Optional[RetrievalHandle] = None
    unavailable_reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.handle is not None


class IngestResult(BaseModel):
    content_hash: str
    is_duplicate: bool
    filename: str
    size: int


# ── API responses ────────────────────────────────────────────────


class IngestResponse(CamelModel):
    content_hash: str
    is_duplicate: bool
    filename: str
    size: int


class FileListItem(CamelModel):
    id: int
    filename: str
    size: int
    content_hash: str
    is_duplicate: bool
    created_at: datetime
    signed_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    available: bool
    unavailable_reason: Optional[str] = None

    @classmethod
    def from_listed(cls, item: ListedFile) -> "FileListItem":
        record = item.record
        return cls(
            id=record.id,
            filename=record.filename,
            size=record.size,
            content_hash=record.content_hash,
            is_duplicate=record.is_duplicate,
            created_at=record.created_at,
            signed_url=item.handle.url if item.handle else None,
            expires_at=item.handle.expires_at if item.handle else None,
            available=item.available,
            unavailable_reason=item.unavailable_reason,
        )

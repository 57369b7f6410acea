"""Shared pytest fixtures and in-memory store doubles."""

from __future__ import annotations

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Settings are read at import time; point them at throwaway resources first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FILE_STORAGE_PATH", tempfile.mkdtemp(prefix="hashdoc-tests-"))
os.environ.setdefault("SIGNING_SECRET", "test-secret")

import pytest

from hashdoc.errors import InvalidObjectKey, MetadataStoreError, ObjectKeyConflict, ObjectStoreError
from hashdoc.schemas.file import RetrievalHandle
from hashdoc.services.documents import DocumentService
from hashdoc.services.metadata_store import (
    INSERTABLE,
    MetadataStoreClient,
    check_column,
    check_direction,
)
from hashdoc.services.object_store import ObjectStoreClient


class InMemoryObjectStore(ObjectStoreClient):
    """Dict-backed object store. Set the ``fail_*`` attributes to inject errors."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str | None] = {}
        self.fail_put = False
        self.fail_remove = False
        self.fail_sign_for: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    async def put(self, key, source, *, content_type=None):
        self.calls.append(("put", key))
        await asyncio.sleep(0)
        if not key or key in (".", "..") or any(c in key for c in ("/", "\\", "\x00")):
            raise InvalidObjectKey(key)
        if self.fail_put:
            raise ObjectStoreError("put unavailable")
        if key in self.objects:
            raise ObjectKeyConflict(key)
        data = bytes(source) if isinstance(source, (bytes, bytearray, memoryview)) else source.read()
        self.objects[key] = data
        self.content_types[key] = content_type

    async def remove(self, key):
        self.calls.append(("remove", key))
        await asyncio.sleep(0)
        if self.fail_remove:
            raise ObjectStoreError("remove unavailable")
        self.objects.pop(key, None)

    async def exists(self, key):
        return key in self.objects

    async def sign(self, key, ttl_seconds):
        self.calls.append(("sign", key))
        await asyncio.sleep(0)
        if key in self.fail_sign_for or key not in self.objects:
            raise ObjectStoreError(f"cannot sign {key}")
        return RetrievalHandle(
            key=key,
            url=f"memory://uploads/{key}?ttl={ttl_seconds}",
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )


class InMemoryMetadataStore(MetadataStoreClient):
    """List-backed metadata store with the same contract as SqlMetadataStore."""

    def __init__(self) -> None:
        self.rows: list[dict] = []
        self._next_id = 1
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.fail_insert = False
        self.fail_delete = False
        self.fail_find = False
        self.fail_list = False
        # When set to n, find_by_field parks until n lookups are in flight
        self.hold_finds = 0
        self._waiting = 0
        self._release = asyncio.Event()
        self.find_limits: list[int] = []

    async def insert(self, values):
        await asyncio.sleep(0)
        if self.fail_insert:
            raise MetadataStoreError("insert unavailable")
        unknown = set(values) - set(INSERTABLE)
        if unknown:
            raise MetadataStoreError(f"Cannot insert fields: {sorted(unknown)}")
        self._clock += timedelta(seconds=1)
        row = {"id": self._next_id, "created_at": self._clock, **values}
        self._next_id += 1
        self.rows.append(row)
        return row["id"]

    async def delete(self, record_id):
        await asyncio.sleep(0)
        if self.fail_delete:
            raise MetadataStoreError("delete unavailable")
        before = len(self.rows)
        self.rows = [r for r in self.rows if r["id"] != record_id]
        if len(self.rows) == before:
            raise MetadataStoreError(f"Record {record_id} not found")

    async def find_by_field(self, field, value, limit):
        check_column(field)
        self.find_limits.append(limit)
        if self.fail_find:
            raise MetadataStoreError("query unavailable")
        matches = [dict(r) for r in self.rows if r.get(field) == value][:limit]
        if self.hold_finds:
            self._waiting += 1
            if self._waiting >= self.hold_finds:
                self._release.set()
            await self._release.wait()
        return matches

    async def list_all(self, order_by="created_at", direction="desc"):
        check_column(order_by)
        check_direction(direction)
        await asyncio.sleep(0)
        if self.fail_list:
            raise MetadataStoreError("listing unavailable")
        return sorted(
            (dict(r) for r in self.rows),
            key=lambda r: (r[order_by], r["id"]),
            reverse=direction == "desc",
        )

    async def get(self, record_id):
        for r in self.rows:
            if r["id"] == record_id:
                return dict(r)
        return None


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def service(object_store, metadata_store) -> DocumentService:
    return DocumentService(object_store, metadata_store)

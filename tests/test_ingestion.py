"""Tests for the upload saga: hash, duplicate check, object write, metadata insert."""

from __future__ import annotations

import asyncio
import io

import pytest

from conftest import run
from hashdoc.errors import (
    DuplicateCheckFailed,
    HashingFailed,
    IngestionError,
    InvalidUpload,
    MetadataInsertFailed,
    ObjectAlreadyExists,
    ObjectWriteFailed,
    OrphanedObjectWarning,
)

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_same_bytes_under_two_names_flags_second_as_duplicate(
    service, object_store, metadata_store
) -> None:
    first = run(service.ingest(b"hello", "a.txt"))
    second = run(service.ingest(b"hello", "b.txt"))

    assert first.content_hash == second.content_hash == HELLO_SHA256
    assert first.is_duplicate is False
    assert second.is_duplicate is True
    assert set(object_store.objects) == {"a.txt", "b.txt"}

    listed = run(service.list())
    assert [item.record.filename for item in listed] == ["b.txt", "a.txt"]
    assert all(item.available for item in listed)


def test_different_content_is_not_duplicate(service) -> None:
    run(service.ingest(b"hello", "a.txt"))
    result = run(service.ingest(b"world", "b.txt"))
    assert result.is_duplicate is False


def test_metadata_row_has_size_hash_and_flag(service, metadata_store) -> None:
    run(service.ingest(b"hello", "a.txt"))
    row = metadata_store.rows[0]
    assert row["filename"] == "a.txt"
    assert row["size"] == 5
    assert row["hash"] == HELLO_SHA256
    assert row["is_duplicate"] is False


def test_declared_size_is_recorded_as_given(service, metadata_store) -> None:
    run(service.ingest(b"hello", "a.txt", declared_size=5))
    assert metadata_store.rows[0]["size"] == 5


def test_stream_source_is_hashed_then_stored_whole(service, object_store) -> None:
    data = b"%PDF-1.7 " + b"z" * 50_000
    result = run(service.ingest(io.BytesIO(data), "doc.pdf", content_type="application/pdf"))

    assert object_store.objects["doc.pdf"] == data
    assert object_store.content_types["doc.pdf"] == "application/pdf"
    assert result.size == len(data)


def test_duplicate_check_fetches_at_most_one_row(service, metadata_store) -> None:
    for name in ("a.txt", "b.txt", "c.txt"):
        run(service.ingest(b"hello", name))
    assert metadata_store.find_limits == [1, 1, 1]


def test_steps_run_in_order(service, object_store, metadata_store) -> None:
    run(service.ingest(b"hello", "a.txt"))
    assert object_store.calls == [("put", "a.txt")]
    assert len(metadata_store.rows) == 1


# ---------------------------------------------------------------------------
# Failures before anything is persisted
# ---------------------------------------------------------------------------


def test_unreadable_input_fails_before_any_side_effect(
    service, object_store, metadata_store
) -> None:
    stream = io.BytesIO(b"hello")
    stream.close()
    with pytest.raises(HashingFailed):
        run(service.ingest(stream, "a.txt"))
    assert object_store.calls == []
    assert metadata_store.find_limits == []


def test_duplicate_check_failure_has_no_side_effects(
    service, object_store, metadata_store
) -> None:
    metadata_store.fail_find = True
    with pytest.raises(DuplicateCheckFailed) as exc_info:
        run(service.ingest(b"hello", "a.txt"))
    assert exc_info.value.filename == "a.txt"
    assert object_store.calls == []
    assert metadata_store.rows == []


def test_negative_declared_size_is_rejected_before_any_write(
    service, object_store, metadata_store
) -> None:
    run(service.ingest(b"hello", "good.txt"))

    with pytest.raises(InvalidUpload) as exc_info:
        run(service.ingest(b"world", "bad.txt", declared_size=-1))

    assert exc_info.value.stage == "validation"
    assert ("put", "bad.txt") not in object_store.calls
    assert len(metadata_store.rows) == 1
    assert [item.record.filename for item in run(service.list())] == ["good.txt"]


def test_zero_declared_size_is_accepted(service, metadata_store) -> None:
    run(service.ingest(b"", "empty.txt", declared_size=0))
    assert metadata_store.rows[0]["size"] == 0


def test_filename_with_path_separator_is_invalid_upload(
    service, object_store, metadata_store
) -> None:
    with pytest.raises(InvalidUpload) as exc_info:
        run(service.ingest(b"hello", "dir/a.pdf"))

    assert not isinstance(exc_info.value, ObjectWriteFailed)
    assert exc_info.value.filename == "dir/a.pdf"
    assert object_store.objects == {}
    assert metadata_store.rows == []


def test_existing_key_raises_object_already_exists(
    service, object_store, metadata_store
) -> None:
    object_store.objects["a.txt"] = b"older content"

    with pytest.raises(ObjectAlreadyExists):
        run(service.ingest(b"hello", "a.txt"))

    assert metadata_store.rows == []
    assert object_store.objects["a.txt"] == b"older content"


def test_name_collision_is_independent_of_content(service, metadata_store) -> None:
    run(service.ingest(b"hello", "a.txt"))
    with pytest.raises(ObjectAlreadyExists):
        run(service.ingest(b"completely different", "a.txt"))
    assert len(metadata_store.rows) == 1


def test_object_write_failure(service, object_store, metadata_store) -> None:
    object_store.fail_put = True
    with pytest.raises(ObjectWriteFailed) as exc_info:
        run(service.ingest(b"hello", "a.txt"))
    assert isinstance(exc_info.value, IngestionError)
    assert metadata_store.rows == []


# ---------------------------------------------------------------------------
# Compensation
# ---------------------------------------------------------------------------


def test_insert_failure_removes_the_object(service, object_store, metadata_store) -> None:
    metadata_store.fail_insert = True

    with pytest.raises(MetadataInsertFailed) as exc_info:
        run(service.ingest(b"hello", "a.txt"))

    assert exc_info.value.compensated is True
    assert not run(object_store.exists("a.txt"))
    assert object_store.calls == [("put", "a.txt"), ("remove", "a.txt")]
    assert metadata_store.rows == []


def test_insert_and_remove_failure_reports_orphan(service, object_store, metadata_store) -> None:
    metadata_store.fail_insert = True
    object_store.fail_remove = True

    with pytest.raises(OrphanedObjectWarning) as exc_info:
        run(service.ingest(b"hello", "a.txt"))

    err = exc_info.value
    assert not isinstance(err, MetadataInsertFailed)
    assert err.compensated is False
    assert err.key == "a.txt"
    assert "a.txt" in str(err)
    assert run(object_store.exists("a.txt"))


def test_retry_after_compensated_failure_succeeds(service, metadata_store) -> None:
    metadata_store.fail_insert = True
    with pytest.raises(MetadataInsertFailed):
        run(service.ingest(b"hello", "a.txt"))

    metadata_store.fail_insert = False
    result = run(service.ingest(b"hello", "a.txt"))
    assert result.is_duplicate is False


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_identical_uploads_may_both_miss_the_duplicate(
    service, metadata_store
) -> None:
    # Accepted weak spot: the duplicate check is not linearizable against
    # concurrent inserts, so both uploads see an empty store.
    metadata_store.hold_finds = 2

    async def both():
        return await asyncio.gather(
            service.ingest(b"hello", "a.txt"),
            service.ingest(b"hello", "b.txt"),
        )

    first, second = run(both())
    assert first.is_duplicate is False
    assert second.is_duplicate is False
    assert len(metadata_store.rows) == 2


def test_concurrent_uploads_do_not_serialize(service, metadata_store) -> None:
    # Both lookups must be in flight at once, otherwise hold_finds never releases.
    metadata_store.hold_finds = 2

    async def both():
        return await asyncio.wait_for(
            asyncio.gather(
                service.ingest(b"one", "one.txt"),
                service.ingest(b"two", "two.txt"),
            ),
            timeout=5,
        )

    results = run(both())
    assert [r.filename for r in results] == ["one.txt", "two.txt"]

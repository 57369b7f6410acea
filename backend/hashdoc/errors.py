"""Error taxonomy for ingestion, retrieval and deletion.

Store clients raise the low-level ``StoreError`` family. The orchestrators
translate those into the stage-specific errors below, chaining the cause.
"""
from typing import Optional


class StoreError(Exception):
    """Base for failures reported by an external store client."""
    pass


class ObjectStoreError(StoreError):
    """Object store call failed."""
    pass


class ObjectKeyConflict(ObjectStoreError):
    """An object already exists at the key and overwrite is disabled."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object already exists: {key}")


class InvalidObjectKey(ObjectStoreError):
    """The key cannot name an object in this store (e.g. it contains a path separator)."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Invalid object key: {key!r}")


class MetadataStoreError(StoreError):
    """Metadata store call failed."""
    pass


class HashDocError(Exception):
    """Base for every error surfaced by the document services."""
    pass


# ── Ingestion ────────────────────────────────────────────────────


class IngestionError(HashDocError):
    """An ingest call failed. ``stage`` names the step that failed."""

    stage = "ingest"

    def __init__(self, filename: str, message: str):
        self.filename = filename
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.stage} failed for {self.filename!r}: {self.message}"


class InvalidUpload(IngestionError):
    """The upload itself is unacceptable (bad size or name). Nothing was written."""
    stage = "validation"


class HashingFailed(IngestionError):
    stage = "hashing"


class DuplicateCheckFailed(IngestionError):
    stage = "duplicate_check"


class ObjectAlreadyExists(IngestionError):
    """Name collision at the object-store key, independent of content."""
    stage = "object_write"


class ObjectWriteFailed(IngestionError):
    stage = "object_write"


class MetadataInsertFailed(IngestionError):
    """Metadata insert failed and the uploaded object was removed again."""

    stage = "metadata_insert"
    compensated = True


class OrphanedObjectWarning(IngestionError):
    """Metadata insert failed and removing the uploaded object failed too.

    The blob at ``key`` has no referencing record and needs manual cleanup.
    """

    stage = "metadata_insert"
    compensated = False

    def __init__(self, filename: str, message: str):
        self.key = filename
        super().__init__(filename, message)

    def __str__(self) -> str:
        return (
            f"metadata insert failed for {self.filename!r} and the object could "
            f"not be removed; orphaned object at key {self.key!r}: {self.message}"
        )


# ── Deletion ─────────────────────────────────────────────────────


class DeletionError(HashDocError):
    """A delete call failed. Carries the record id and object key."""

    stage = "delete"

    def __init__(self, record_id: int, filename: str, message: str):
        self.record_id = record_id
        self.filename = filename
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            f"{self.stage} failed for record {self.record_id} "
            f"({self.filename!r}): {self.message}"
        )


class ObjectDeleteFailed(DeletionError):
    """Object removal failed; the metadata row was left untouched."""
    stage = "object_delete"


class MetadataDeleteFailed(DeletionError):
    """Object was removed but the metadata row is still present (orphaned)."""
    stage = "metadata_delete"


# ── Retrieval ────────────────────────────────────────────────────


class RetrievalError(HashDocError):
    pass


class ListingFailed(RetrievalError):
    """The metadata listing itself could not be read."""
    pass


class RetrievalHandleUnavailable(RetrievalError):
    """A signed URL could not be issued for one record. Never fatal to a listing."""

    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"No retrieval handle for {key!r}: {message}")


class MalformedRecord(HashDocError):
    """A metadata row did not match the FileRecord shape."""

    def __init__(self, record_id: Optional[object], errors: str):
        self.record_id = record_id
        self.errors = errors
        super().__init__(f"Malformed file record {record_id!r}: {errors}")

"""Files API routes."""
import fnmatch
import logging
import mimetypes
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, UploadFile, File as FastAPIFile
from fastapi.responses import FileResponse

from hashdoc.config import settings
from hashdoc.errors import (
    DeletionError,
    HashDocError,
    HashingFailed,
    InvalidUpload,
    MalformedRecord,
    MetadataDeleteFailed,
    ObjectAlreadyExists,
    OrphanedObjectWarning,
    StoreError,
)
from hashdoc.schemas.common import DeleteResponse
from hashdoc.schemas.file import FileListItem, FileRecord, IngestResponse
from hashdoc.services.documents import DocumentService, get_document_service
from hashdoc.services.object_store import LocalObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


def _content_type_allowed(content_type: Optional[str]) -> bool:
    patterns = [p.strip().lower() for p in settings.ALLOWED_CONTENT_TYPES.split(",") if p.strip()]
    if not patterns:
        return True
    if not content_type:
        return False
    # "application/pdf; name=a.pdf" matches on the media type alone
    media_type = content_type.split(";")[0].strip().lower()
    return any(fnmatch.fnmatch(media_type, p) for p in patterns)


def _http_error(e: HashDocError) -> HTTPException:
    """Map a service error to a response. Orphan states keep their key / record id."""
    if isinstance(e, ObjectAlreadyExists):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidUpload):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, HashingFailed):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, OrphanedObjectWarning):
        return HTTPException(status_code=500, detail={"error": str(e), "orphanedKey": e.key})
    if isinstance(e, MetadataDeleteFailed):
        return HTTPException(
            status_code=500,
            detail={"error": str(e), "orphanedRecordId": e.record_id, "key": e.filename},
        )
    if isinstance(e, MalformedRecord):
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@router.post("/upload", response_model=IngestResponse, status_code=201)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    service: DocumentService = Depends(get_document_service),
):
    """Upload a file, flagging it if identical content is already stored."""
    if not file.filename:
        raise HTTPException(status_code=422, detail="Uploaded file has no name")
    if not _content_type_allowed(file.content_type):
        logger.warning(f"Rejected upload {file.filename}: content type {file.content_type}")
        raise HTTPException(status_code=415, detail=f"Unsupported content type: {file.content_type}")

    try:
        result = await service.ingest(
            file.file,
            file.filename,
            declared_size=file.size,
            content_type=file.content_type,
        )
    except HashDocError as e:
        raise _http_error(e) from e
    return IngestResponse(**result.model_dump())


@router.get("", response_model=list[FileListItem])
async def list_files(service: DocumentService = Depends(get_document_service)):
    """List all files newest first, each with a fresh signed URL."""
    try:
        listed = await service.list()
    except HashDocError as e:
        raise _http_error(e) from e
    return [FileListItem.from_listed(item) for item in listed]


@router.delete("/{record_id}", response_model=DeleteResponse)
async def delete_file(
    record_id: int,
    filename: Optional[str] = Query(None),
    service: DocumentService = Depends(get_document_service),
):
    """Delete a file's object and then its record."""
    if filename is None:
        try:
            row = await service.metadata_store.get(record_id)
        except StoreError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        if row is None:
            raise HTTPException(status_code=404, detail="File not found")
        try:
            filename = FileRecord.from_row(row).filename
        except MalformedRecord as e:
            raise _http_error(e) from e

    try:
        await service.delete(record_id, filename)
    except DeletionError as e:
        raise _http_error(e) from e
    return DeleteResponse(deleted=True, id=str(record_id))


@router.get("/download/{key}")
async def download_file(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    service: DocumentService = Depends(get_document_service),
):
    """Serve an object from the local store through a signed URL."""
    store = service.object_store
    if not isinstance(store, LocalObjectStore):
        raise HTTPException(status_code=404, detail="Downloads are served by the object store")
    if not store.verify(key, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    try:
        path = store.path_for(key)
    except StoreError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    media_type, _ = mimetypes.guess_type(key)
    return FileResponse(
        path=path,
        filename=key,
        media_type=media_type or "application/octet-stream",
    )

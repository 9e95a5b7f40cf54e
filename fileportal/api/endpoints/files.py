import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from fileportal.api.deps import get_blob_storage, get_file_service, get_metadata_store
from fileportal.core.security import Caller, get_current_caller, read_blob_token, require_admin
from fileportal.schemas.file import AssignRequest, AssignResponse, DownloadResponse, FileListResponse, FileOut
from fileportal.services.file_service import FileService
from fileportal.services.metadata import MetadataStore
from fileportal.services.storage.base import BaseStorage
from fileportal.services.storage.internal import InternalStorage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=FileListResponse)
async def list_files(
    caller: Caller = Depends(get_current_caller),
    file_service: FileService = Depends(get_file_service),
):
    """Admins see every file, other users only the files assigned to them."""
    records = await file_service.list_visible_files(caller)
    return FileListResponse(files=[FileOut.from_record(r) for r in records])


@router.get("/blob/{token}")
async def download_blob(token: str, storage: BaseStorage = Depends(get_blob_storage)):
    """Serve a signed local-storage link."""
    key = read_blob_token(token)
    if not isinstance(storage, InternalStorage):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")
    path = storage.local_path(key)
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")
    return FileResponse(path=path, filename=path.name, media_type="application/octet-stream")


@router.get("/{file_id}/download", response_model=DownloadResponse)
async def download_file(
    file_id: int,
    caller: Caller = Depends(get_current_caller),
    file_service: FileService = Depends(get_file_service),
):
    record, url, ttl = await file_service.download_url(caller, file_id)
    logger.info(f"Download link issued for file {file_id} to user {caller.user_id}")
    return DownloadResponse(file_id=record.id, filename=record.filename, download_url=url, expires_in=ttl)


@router.post("/{file_id}/assignments", response_model=AssignResponse)
async def assign_file(
    file_id: int,
    req: AssignRequest,
    caller: Caller = Depends(require_admin),
    metadata: MetadataStore = Depends(get_metadata_store),
    file_service: FileService = Depends(get_file_service),
):
    await metadata.assign_file_to_users(file_id, req.user_ids)
    logger.info(f"File {file_id} assigned to users {req.user_ids} by admin {caller.user_id}")
    record = await file_service.get_visible_file(caller, file_id)
    return AssignResponse(file=FileOut.from_record(record))

import base64
import logging
import os
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import ValidationError

from fileportal.api.deps import get_eager_manager, get_file_service, get_lazy_manager
from fileportal.core.security import Caller, require_admin
from fileportal.models.upload_session import UploadSession
from fileportal.schemas.upload import (
    AbortRequest,
    AbortResponse,
    ChunkDataResponse,
    ChunkProgressResponse,
    ChunkRequest,
    CombineRequest,
    EagerUploadRequest,
    FileCompletedResponse,
    GetChunkRequest,
    InitMetadata,
    InitRequest,
    InitResponse,
    LazyUploadRequest,
    MarkCompletedRequest,
    MarkCompletedResponse,
    SessionInfo,
    SessionInfoRequest,
    SessionInfoResponse,
)
from fileportal.services.chunk_session import ChunkSessionManager
from fileportal.services.file_service import FileService
from fileportal.services.reassembly import ReassemblyResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_info(session: UploadSession) -> SessionInfo:
    return SessionInfo(
        session_id=session.session_id,
        file_name=session.file_name,
        file_size=session.declared_size,
        mime_type=session.mime_type,
        total_chunks=session.total_chunks,
        uploaded_chunks=session.uploaded_chunk_count,
        uploaded_chunk_indices=session.uploaded_chunks,
        chunk_size=session.chunk_size,
        status=session.status.value,
        created_at=session.created_at,
        completed_at=session.completed_at,
    )


async def _register(
    file_service: FileService, session: UploadSession, result: ReassemblyResult, message: str
) -> FileCompletedResponse:
    record = await file_service.register_upload(
        result,
        uploader_id=session.uploader_id,
        description=session.description,
        assigned_user_ids=session.assigned_user_ids,
    )
    return FileCompletedResponse(
        message=message,
        session_id=result.session_id,
        file_id=record.id,
        file_key=result.file_key,
        file_name=result.file_name,
        file_size=result.file_size,
        original_chunks=result.total_chunks,
    )


async def _init(manager: ChunkSessionManager, req: InitRequest, caller: Caller) -> InitResponse:
    session = await manager.init_session(
        file_name=req.file_name,
        declared_size=req.file_size,
        mime_type=req.mime_type,
        uploader_id=caller.user_id,
        description=req.description,
        assigned_user_ids=req.assigned_user_ids,
    )
    return InitResponse(
        session_id=session.session_id,
        total_chunks=session.total_chunks,
        chunk_size=session.chunk_size,
    )


async def _init_from_form(
    manager: ChunkSessionManager, file: UploadFile, metadata: Optional[str], caller: Caller
) -> InitResponse:
    """Open a session from a multipart form; only the file's name, size and type are read."""
    extra = InitMetadata()
    if metadata:
        try:
            extra = InitMetadata.model_validate_json(metadata)
        except ValidationError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid metadata JSON")

    size = file.size
    if size is None:
        file.file.seek(0, os.SEEK_END)
        size = file.file.tell()
    if not file.filename or not size:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    logger.info(f"Form init received: name={file.filename} size={size} type={file.content_type}")
    req = InitRequest(
        action="init",
        file_name=file.filename,
        file_size=size,
        mime_type=file.content_type,
        description=extra.description,
        assigned_user_ids=extra.assigned_user_ids,
    )
    return await _init(manager, req, caller)


async def _handle_common(manager: ChunkSessionManager, req, caller: Caller):
    if isinstance(req, InitRequest):
        return await _init(manager, req, caller)
    if isinstance(req, SessionInfoRequest):
        session = await manager.get_session_info(req.session_id)
        return SessionInfoResponse(session=_session_info(session))
    if isinstance(req, AbortRequest):
        removed = await manager.abort_session(req.session_id)
        return AbortResponse(session_id=req.session_id, chunks_removed=removed)
    return None


@router.post("/chunked")
async def chunked_upload(
    req: Annotated[EagerUploadRequest, Body(discriminator="action")],
    caller: Caller = Depends(require_admin),
    manager: ChunkSessionManager = Depends(get_eager_manager),
    file_service: FileService = Depends(get_file_service),
):
    """Eager upload: the request delivering the last missing chunk also builds the file."""
    if isinstance(req, ChunkRequest):
        outcome = await manager.upload_chunk(req.session_id, req.chunk_index, req.chunk_data)
        if outcome.reassembly is not None:
            return await _register(
                file_service, outcome.session, outcome.reassembly, "File uploaded successfully"
            )
        return ChunkProgressResponse(
            session_id=req.session_id,
            chunk_index=req.chunk_index,
            uploaded_chunks=outcome.session.uploaded_chunk_count,
            total_chunks=outcome.session.total_chunks,
        )
    return await _handle_common(manager, req, caller)


@router.post("/chunked/init", response_model=InitResponse)
async def chunked_upload_init(
    file: UploadFile = File(...),
    metadata: Optional[str] = Form(None),
    caller: Caller = Depends(require_admin),
    manager: ChunkSessionManager = Depends(get_eager_manager),
):
    return await _init_from_form(manager, file, metadata, caller)


@router.post("/lazy")
async def lazy_upload(
    req: Annotated[LazyUploadRequest, Body(discriminator="action")],
    caller: Caller = Depends(require_admin),
    manager: ChunkSessionManager = Depends(get_lazy_manager),
):
    """Lazy upload: chunks are only stored; the file is built by ``/upload/lazy/combine``."""
    if isinstance(req, ChunkRequest):
        outcome = await manager.upload_chunk(req.session_id, req.chunk_index, req.chunk_data)
        return ChunkProgressResponse(
            message="Chunk stored",
            session_id=req.session_id,
            chunk_index=req.chunk_index,
            uploaded_chunks=outcome.session.uploaded_chunk_count,
            total_chunks=outcome.session.total_chunks,
        )
    if isinstance(req, GetChunkRequest):
        data = await manager.get_chunk(req.session_id, req.chunk_index)
        return ChunkDataResponse(
            session_id=req.session_id,
            chunk_index=req.chunk_index,
            chunk_data=base64.b64encode(data).decode("ascii"),
            chunk_size=len(data),
        )
    if isinstance(req, MarkCompletedRequest):
        session = await manager.mark_completed(req.session_id)
        return MarkCompletedResponse(
            session_id=session.session_id,
            status=session.status.value,
            total_chunks=session.total_chunks,
            uploaded_chunks=session.uploaded_chunk_count,
        )
    return await _handle_common(manager, req, caller)


@router.post("/lazy/init", response_model=InitResponse)
async def lazy_upload_init(
    file: UploadFile = File(...),
    metadata: Optional[str] = Form(None),
    caller: Caller = Depends(require_admin),
    manager: ChunkSessionManager = Depends(get_lazy_manager),
):
    return await _init_from_form(manager, file, metadata, caller)


@router.post("/lazy/combine", response_model=FileCompletedResponse)
async def lazy_combine(
    req: CombineRequest,
    caller: Caller = Depends(require_admin),
    manager: ChunkSessionManager = Depends(get_lazy_manager),
    file_service: FileService = Depends(get_file_service),
):
    session = await manager.get_session_info(req.session_id)
    result = await manager.combine(req.session_id)
    return await _register(file_service, session, result, "File combined successfully")

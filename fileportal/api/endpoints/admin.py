import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from fileportal.api.deps import get_deletion_coordinator, get_lazy_manager, get_reconciler
from fileportal.core.security import Caller, require_admin
from fileportal.schemas.file import DeleteFileRequest, DeleteFileResponse
from fileportal.schemas.sync import SessionCleanupResponse, SyncResponse
from fileportal.services.chunk_session import ChunkSessionManager
from fileportal.services.deletion import DeletionCoordinator
from fileportal.services.reconciler import ConsistencyReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


def _truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes")


@router.post("/sync", response_model=SyncResponse)
async def sync_storage(
    x_delete_orphaned: Optional[str] = Header(None),
    delete_orphans: bool = Query(False, alias="deleteOrphans"),
    caller: Caller = Depends(require_admin),
    reconciler: ConsistencyReconciler = Depends(get_reconciler),
):
    """Reconcile blob storage with the file records.

    Orphaned blobs are only reported unless the caller opts in through the
    ``X-Delete-Orphaned: true`` header or ``deleteOrphans=true``.
    """
    opt_in = delete_orphans or _truthy(x_delete_orphaned)
    logger.info(f"Sync requested by admin {caller.user_id} (delete orphans: {opt_in})")
    report = await reconciler.reconcile(delete_orphans=opt_in)
    return SyncResponse(report=report)


@router.delete("/files", response_model=DeleteFileResponse)
async def delete_file(
    req: DeleteFileRequest,
    caller: Caller = Depends(require_admin),
    coordinator: DeletionCoordinator = Depends(get_deletion_coordinator),
):
    logger.info(f"Admin {caller.user_id} deleting file {req.file_id}")
    result = await coordinator.delete_file(req.file_id)
    return DeleteFileResponse.from_result(result)


@router.post("/sessions/cleanup", response_model=SessionCleanupResponse)
async def cleanup_sessions(
    caller: Caller = Depends(require_admin),
    manager: ChunkSessionManager = Depends(get_lazy_manager),
):
    """Remove abandoned upload sessions and their chunks."""
    # Eager and lazy sessions share one namespace, so one sweep covers both
    expired = await manager.expire_stale_sessions()
    logger.info(f"Session cleanup by admin {caller.user_id}: {len(expired)} removed")
    return SessionCleanupResponse(expired_sessions=expired, count=len(expired))

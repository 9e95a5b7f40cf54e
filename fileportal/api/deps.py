from fastapi import Depends

from fileportal.models.upload_session import UploadVariant
from fileportal.services.chunk_session import ChunkSessionManager
from fileportal.services.deletion import DeletionCoordinator
from fileportal.services.file_service import FileService
from fileportal.services.metadata import MetadataStore
from fileportal.services.reconciler import ConsistencyReconciler
from fileportal.services.retry import RetryPolicy
from fileportal.services.session_store import BlobSessionStore, SessionStore
from fileportal.services.storage.base import BaseStorage
from fileportal.services.storage.factory import get_storage


def get_blob_storage() -> BaseStorage:
    return get_storage()


def get_metadata_store() -> MetadataStore:
    return MetadataStore()


def get_session_store(storage: BaseStorage = Depends(get_blob_storage)) -> SessionStore:
    return BlobSessionStore(storage)


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy.for_blob_delete()


def get_eager_manager(
    storage: BaseStorage = Depends(get_blob_storage),
    session_store: SessionStore = Depends(get_session_store),
) -> ChunkSessionManager:
    return ChunkSessionManager(storage, session_store, UploadVariant.EAGER)


def get_lazy_manager(
    storage: BaseStorage = Depends(get_blob_storage),
    session_store: SessionStore = Depends(get_session_store),
) -> ChunkSessionManager:
    return ChunkSessionManager(storage, session_store, UploadVariant.LAZY)


def get_file_service(
    storage: BaseStorage = Depends(get_blob_storage),
    metadata: MetadataStore = Depends(get_metadata_store),
) -> FileService:
    return FileService(storage, metadata)


def get_reconciler(
    storage: BaseStorage = Depends(get_blob_storage),
    metadata: MetadataStore = Depends(get_metadata_store),
) -> ConsistencyReconciler:
    return ConsistencyReconciler(storage, metadata)


def get_deletion_coordinator(
    storage: BaseStorage = Depends(get_blob_storage),
    metadata: MetadataStore = Depends(get_metadata_store),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
) -> DeletionCoordinator:
    return DeletionCoordinator(storage, metadata, retry_policy)

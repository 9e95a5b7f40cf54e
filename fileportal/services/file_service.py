import logging
from typing import Iterable, List, Optional, Tuple

from fileportal.core.config import settings
from fileportal.core.exceptions import FileNotFound, PortalError
from fileportal.core.security import Caller
from fileportal.services.metadata import FileRecord, MetadataStore
from fileportal.services.reassembly import ReassemblyResult
from fileportal.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


class FileService:
    def __init__(self, storage: BaseStorage, metadata: MetadataStore):
        self.storage = storage
        self.metadata = metadata

    async def register_upload(
        self,
        result: ReassemblyResult,
        uploader_id: Optional[int],
        description: Optional[str] = None,
        assigned_user_ids: Iterable[int] = (),
    ) -> FileRecord:
        """Record a reassembled blob as a logical file and assign it to users."""
        try:
            file_id = await self.metadata.insert_file(
                filename=result.file_name,
                size=result.file_size,
                mime_type=result.mime_type,
                storage_key=result.file_key,
                uploader_id=uploader_id,
                description=description,
            )
            user_ids = list(assigned_user_ids)
            if user_ids:
                await self.metadata.assign_file_to_users(file_id, user_ids)
        except PortalError:
            logger.error(f"Registering {result.file_key} failed; blob left for reconciliation")
            raise
        logger.info(f"File {file_id} registered for blob {result.file_key}")
        return await self.metadata.get_file_by_id(file_id)

    async def list_visible_files(self, caller: Caller) -> List[FileRecord]:
        if caller.is_admin:
            return await self.metadata.list_files()
        return await self.metadata.list_files_for_user(caller.user_id)

    async def get_visible_file(self, caller: Caller, file_id: int) -> FileRecord:
        record = await self.metadata.get_file_by_id(file_id)
        if record is None:
            raise FileNotFound(file_id)
        if not caller.is_admin and caller.user_id not in record.assigned_user_ids:
            raise FileNotFound(file_id)
        return record

    async def download_url(self, caller: Caller, file_id: int) -> Tuple[FileRecord, str, int]:
        record = await self.get_visible_file(caller, file_id)
        if not record.storage_key:
            raise FileNotFound(file_id)
        ttl = settings.SIGNED_URL_TTL_SECONDS
        url = await self.storage.signed_url(record.storage_key, ttl, "download")
        return record, url, ttl

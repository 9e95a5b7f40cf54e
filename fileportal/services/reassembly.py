import logging
from dataclasses import dataclass
from typing import List

from fileportal.core.exceptions import MissingChunk, SizeMismatch, StorageError
from fileportal.models.upload_session import UploadSession
from fileportal.services import keys
from fileportal.services.session_store import SessionStore
from fileportal.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


@dataclass
class ReassemblyResult:
    session_id: str
    file_key: str
    file_name: str
    file_size: int
    mime_type: str
    total_chunks: int


class ChunkReassembler:
    def __init__(self, storage: BaseStorage, session_store: SessionStore):
        self.storage = storage
        self.session_store = session_store

    async def reassemble(self, session: UploadSession, verify_declared_size: bool = True) -> ReassemblyResult:
        """Concatenate chunks 0..N-1 into one blob, persist it, then release the session.

        Source chunks and the session record are only removed after the final
        blob write has returned.
        """
        logger.info(f"Starting reassembly of {session.total_chunks} chunks for session {session.session_id}")

        buffers: List[bytes] = []
        for index in range(session.total_chunks):
            key = keys.chunk_key(session.session_id, index)
            data = await self.storage.get_object(key)
            if data is None:
                logger.error(f"Chunk {index} missing for session {session.session_id}: {key}")
                raise MissingChunk(session.session_id, index, key)
            buffers.append(data)
            logger.debug(f"Loaded chunk {index}: {len(data)} bytes")

        combined = b"".join(buffers)
        total_size = len(combined)

        if total_size != session.declared_size:
            if verify_declared_size:
                raise SizeMismatch(session.session_id, session.declared_size, total_size)
            logger.warning(
                f"Session {session.session_id} declared {session.declared_size} bytes, "
                f"reassembled {total_size} bytes"
            )

        file_key = keys.final_file_key(session.file_name)
        await self.storage.put_object(file_key, combined, content_type=session.mime_type)
        logger.info(f"Final file stored: {file_key} ({total_size} bytes)")

        await self.release(session.session_id)

        return ReassemblyResult(
            session_id=session.session_id,
            file_key=file_key,
            file_name=session.file_name,
            file_size=total_size,
            mime_type=session.mime_type,
            total_chunks=session.total_chunks,
        )

    async def release(self, session_id: str) -> int:
        """Delete the session record and every chunk stored for it.

        Failures are logged and left for the stale-session sweep; returns the
        number of chunk blobs removed.
        """
        removed = 0
        try:
            await self.session_store.delete(session_id)
            chunks = await self.storage.list_all_objects(keys.chunk_prefix(session_id))
        except StorageError as e:
            logger.warning(f"Cleanup of session {session_id} deferred: {e.details}")
            return removed
        for obj in chunks:
            try:
                await self.storage.delete_object(obj.key)
                removed += 1
            except StorageError as e:
                logger.warning(f"Could not delete chunk {obj.key} of session {session_id}: {e.details}")
        logger.info(f"Cleanup completed for session {session_id}: {removed} chunks removed")
        return removed

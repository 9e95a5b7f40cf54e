"""Chunked upload protocol.

One manager class serves both upload paths:

* eager: 3 MiB chunks, 100 MiB ceiling, reassembles in the request that
  delivers the last missing chunk;
* lazy: 5 MiB chunks, 500 MiB ceiling, chunks can be read back by index and
  reassembly only happens on an explicit ``combine``.

Progress is the distinct set of chunk indices present, so re-sending an index
overwrites its blob without inflating the count.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from fileportal.core.config import settings
from fileportal.core.exceptions import (
    ChunkNotFound,
    IncompleteUpload,
    InvalidChunk,
    PayloadTooLarge,
    SessionNotFound,
    StorageError,
    UnsupportedAction,
)
from fileportal.models.upload_session import SessionStatus, UploadSession, UploadVariant, utcnow
from fileportal.services import keys
from fileportal.services.reassembly import ChunkReassembler, ReassemblyResult
from fileportal.services.session_store import SessionStore
from fileportal.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantLimits:
    chunk_size: int
    max_file_size: int


def variant_limits(variant: UploadVariant) -> VariantLimits:
    if variant is UploadVariant.EAGER:
        return VariantLimits(settings.eager_chunk_size, settings.eager_max_file_size)
    return VariantLimits(settings.lazy_chunk_size, settings.lazy_max_file_size)


@dataclass
class ChunkUploadOutcome:
    session: UploadSession
    reassembly: Optional[ReassemblyResult] = None


class ChunkSessionManager:
    def __init__(
        self,
        storage: BaseStorage,
        session_store: SessionStore,
        variant: UploadVariant,
        limits: Optional[VariantLimits] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.session_store = session_store
        self.variant = variant
        self.limits = limits or variant_limits(variant)
        self.clock = clock
        self.reassembler = ChunkReassembler(storage, session_store)

    async def init_session(
        self,
        file_name: str,
        declared_size: int,
        mime_type: Optional[str] = None,
        uploader_id: Optional[int] = None,
        description: Optional[str] = None,
        assigned_user_ids: Iterable[int] = (),
    ) -> UploadSession:
        if declared_size > self.limits.max_file_size:
            raise PayloadTooLarge(declared_size, self.limits.max_file_size)

        session = UploadSession(
            session_id=f"{self.variant.value}_{uuid.uuid4().hex}",
            variant=self.variant,
            file_name=file_name,
            declared_size=declared_size,
            mime_type=mime_type or "application/octet-stream",
            chunk_size=self.limits.chunk_size,
            total_chunks=math.ceil(declared_size / self.limits.chunk_size),
            uploader_id=uploader_id,
            description=description,
            assigned_user_ids=list(assigned_user_ids),
            created_at=self.clock(),
        )
        await self.session_store.create(session)
        logger.info(
            f"Upload session created: {session.session_id} file={file_name} "
            f"size={declared_size} chunks={session.total_chunks}"
        )
        return session

    async def _load(self, session_id: str) -> UploadSession:
        session = await self.session_store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.variant is not self.variant:
            logger.warning(
                f"Session {session_id} belongs to the {session.variant.value} upload path, "
                f"rejected by the {self.variant.value} path"
            )
            raise SessionNotFound(session_id)
        return session

    def _require_lazy(self, action: str) -> None:
        if self.variant is not UploadVariant.LAZY:
            raise UnsupportedAction(f"'{action}' is only available for lazy uploads")

    async def upload_chunk(self, session_id: str, chunk_index: int, data: bytes) -> ChunkUploadOutcome:
        session = await self._load(session_id)

        if not 0 <= chunk_index < session.total_chunks:
            raise InvalidChunk(session_id, chunk_index, f"index must be between 0 and {session.total_chunks - 1}")
        if not data:
            raise InvalidChunk(session_id, chunk_index, "empty chunk received")
        if len(data) > session.chunk_size:
            raise InvalidChunk(
                session_id, chunk_index, f"{len(data)} bytes exceeds the chunk size of {session.chunk_size} bytes"
            )

        expected = session.expected_chunk_length(chunk_index)
        if len(data) != expected:
            logger.warning(
                f"Chunk {chunk_index} of session {session_id} is {len(data)} bytes, expected {expected}"
            )

        await self.storage.put_object(keys.chunk_key(session_id, chunk_index), data)

        # Union with what is actually stored so parallel uploads of other indices are not lost
        stored = await self.storage.list_all_objects(keys.chunk_prefix(session_id))
        present = {keys.chunk_index_from_key(session_id, obj.key) for obj in stored}
        present.discard(None)
        session.record_chunks(set(session.uploaded_chunks) | present | {chunk_index})
        await self.session_store.update(session)

        logger.info(
            f"Chunk {chunk_index} uploaded for session {session_id}, "
            f"{session.uploaded_chunk_count}/{session.total_chunks} complete"
        )

        if self.variant is UploadVariant.EAGER and session.is_complete:
            logger.info(f"All chunks uploaded for session {session_id}, combining file")
            result = await self.reassembler.reassemble(session, verify_declared_size=True)
            return ChunkUploadOutcome(session=session, reassembly=result)
        return ChunkUploadOutcome(session=session)

    async def get_chunk(self, session_id: str, chunk_index: int) -> bytes:
        self._require_lazy("get_chunk")
        await self._load(session_id)
        data = await self.storage.get_object(keys.chunk_key(session_id, chunk_index))
        if data is None:
            raise ChunkNotFound(session_id, chunk_index)
        return data

    async def get_session_info(self, session_id: str) -> UploadSession:
        return await self._load(session_id)

    async def mark_completed(self, session_id: str) -> UploadSession:
        """Flag the session completed. Advisory only: chunk completeness is not checked."""
        self._require_lazy("mark_completed")
        session = await self._load(session_id)
        session.status = SessionStatus.COMPLETED
        session.completed_at = self.clock()
        await self.session_store.update(session)
        logger.info(
            f"Session {session_id} marked completed with "
            f"{session.uploaded_chunk_count}/{session.total_chunks} chunks"
        )
        return session

    async def combine(self, session_id: str) -> ReassemblyResult:
        self._require_lazy("combine")
        session = await self._load(session_id)
        if not session.is_complete:
            raise IncompleteUpload(session_id, session.uploaded_chunk_count, session.total_chunks)
        return await self.reassembler.reassemble(session, verify_declared_size=False)

    async def abort_session(self, session_id: str) -> int:
        await self._load(session_id)
        removed = await self.reassembler.release(session_id)
        logger.info(f"Session {session_id} aborted")
        return removed

    async def expire_stale_sessions(self, max_age: Optional[timedelta] = None) -> List[str]:
        """Remove sessions older than ``max_age`` and chunk groups left without a session."""
        max_age = max_age if max_age is not None else timedelta(hours=settings.SESSION_TTL_HOURS)
        cutoff = self.clock() - max_age
        expired: List[str] = []

        live_ids = set()
        for session_id in await self.session_store.list_ids():
            try:
                session = await self.session_store.get(session_id)
            except StorageError as e:
                logger.error(f"Could not read session {session_id}: {e.details}")
                live_ids.add(session_id)
                continue
            if session is not None and session.created_at >= cutoff:
                live_ids.add(session_id)
                continue
            await self.reassembler.release(session_id)
            expired.append(session_id)

        # Chunk groups whose session record is gone; recently written ones may belong to a new session
        recent_ids = set()
        stray_ids = set()
        for obj in await self.storage.list_all_objects(keys.chunks_root()):
            session_id = keys.session_id_from_chunk_key(obj.key)
            if not session_id or session_id in live_ids or session_id in expired:
                continue
            if obj.last_modified is not None and obj.last_modified >= cutoff:
                recent_ids.add(session_id)
            stray_ids.add(session_id)
        for session_id in sorted(stray_ids - recent_ids):
            await self.reassembler.release(session_id)
            expired.append(session_id)

        if expired:
            logger.info(f"Expired {len(expired)} stale upload sessions")
        return expired

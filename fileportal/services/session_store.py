import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import ValidationError

from fileportal.models.upload_session import UploadSession
from fileportal.services import keys
from fileportal.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    @abstractmethod
    async def create(self, session: UploadSession) -> None:
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[UploadSession]:
        pass

    @abstractmethod
    async def update(self, session: UploadSession) -> None:
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def list_ids(self) -> List[str]:
        pass


class BlobSessionStore(SessionStore):
    """Keeps each session as a JSON document in the upload namespace of the blob store."""

    def __init__(self, storage: BaseStorage):
        self.storage = storage

    async def create(self, session: UploadSession) -> None:
        await self._write(session)

    async def get(self, session_id: str) -> Optional[UploadSession]:
        raw = await self.storage.get_object(keys.session_key(session_id))
        if raw is None:
            return None
        try:
            return UploadSession.model_validate_json(raw)
        except ValidationError:
            logger.error(f"Corrupt session record for {session_id}, treating as missing")
            return None

    async def update(self, session: UploadSession) -> None:
        await self._write(session)

    async def delete(self, session_id: str) -> None:
        await self.storage.delete_object(keys.session_key(session_id))

    async def list_ids(self) -> List[str]:
        objects = await self.storage.list_all_objects(keys.sessions_prefix())
        ids = [keys.session_id_from_key(obj.key) for obj in objects]
        return [session_id for session_id in ids if session_id]

    async def _write(self, session: UploadSession) -> None:
        await self.storage.put_object(
            keys.session_key(session.session_id),
            session.model_dump_json().encode("utf-8"),
            content_type="application/json",
        )

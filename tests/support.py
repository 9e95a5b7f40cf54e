"""In-memory fakes and helpers shared by the test modules."""

import asyncio
import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

import jwt
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from fileportal.core.exceptions import FileNotFound, StorageError, UnknownUsers
from fileportal.db.session import create_session_factory, init_db
from fileportal.services.metadata import FileRecord, MetadataStore
from fileportal.services.storage.base import DEFAULT_PAGE_SIZE, BaseStorage, ObjectPage, StoredObject


def make_token(user_id: int, is_admin: bool = False, **claims) -> str:
    payload = {"sub": str(user_id), "isAdmin": is_admin, **claims}
    return jwt.encode(payload, os.environ["JWT_SECRET_KEY"], algorithm="HS256")


def auth_headers(user_id: int, is_admin: bool = False) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, is_admin)}"}


def build_metadata_store(db_path: str) -> MetadataStore:
    """MetadataStore on its own SQLite file; NullPool keeps connections off any one event loop."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    return MetadataStore(create_session_factory(engine))


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class InMemoryStorage(BaseStorage):
    """Dict-backed blob store with optional failure injection.

    With ``yield_control`` every call gives the event loop a turn, so
    ``asyncio.gather`` interleaves concurrent uploads.
    """

    def __init__(self, page_size: Optional[int] = None, yield_control: bool = False):
        self.objects: Dict[str, Tuple[bytes, datetime]] = {}
        self.page_size = page_size
        self.yield_control = yield_control
        self.failures: Dict[str, Set[str]] = {}
        self.now = lambda: datetime.now(timezone.utc)
        self.delete_calls: List[str] = []

    def fail(self, operation: str, key: str) -> None:
        self.failures.setdefault(operation, set()).add(key)

    async def _enter(self, operation: str, key: str) -> None:
        if self.yield_control:
            await asyncio.sleep(0)
        if key in self.failures.get(operation, set()):
            raise StorageError(operation, key, "injected failure")

    def get_backend_name(self) -> str:
        return "memory"

    async def put_object(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        await self._enter("put", key)
        self.objects[key] = (bytes(data), self.now())

    async def get_object(self, key: str) -> Optional[bytes]:
        await self._enter("get", key)
        entry = self.objects.get(key)
        return entry[0] if entry else None

    async def delete_object(self, key: str) -> None:
        self.delete_calls.append(key)
        await self._enter("delete", key)
        self.objects.pop(key, None)

    async def object_exists(self, key: str) -> bool:
        await self._enter("head", key)
        return key in self.objects

    async def list_objects(
        self, prefix: str = "", continuation_token: Optional[str] = None, page_size: int = DEFAULT_PAGE_SIZE
    ) -> ObjectPage:
        await self._enter("list", prefix)
        size = self.page_size or page_size
        matching = sorted(k for k in self.objects if k.startswith(prefix))
        if continuation_token:
            matching = [k for k in matching if k > continuation_token]
        page = matching[:size]
        objects = [StoredObject(key=k, size=len(self.objects[k][0]), last_modified=self.objects[k][1]) for k in page]
        next_token = page[-1] if len(matching) > size else None
        return ObjectPage(objects=objects, next_token=next_token)

    async def signed_url(self, key: str, ttl_seconds: int, direction: str = "download") -> str:
        return f"memory://{key}?ttl={ttl_seconds}&direction={direction}"


class StubbornStorage(InMemoryStorage):
    """Acknowledges deletes without removing anything."""

    async def delete_object(self, key: str) -> None:
        self.delete_calls.append(key)
        await self._enter("delete", key)


class FakeMetadataStore:
    def __init__(self):
        self.files: Dict[int, FileRecord] = {}
        self.users: Set[int] = set()
        self.failures: Dict[str, Set[int]] = {}
        self._next_id = 1

    def fail(self, operation: str, file_id: int) -> None:
        self.failures.setdefault(operation, set()).add(file_id)

    def _check(self, operation: str, file_id: int) -> None:
        if file_id in self.failures.get(operation, set()):
            raise StorageError(operation, str(file_id), "injected failure")

    def add_file(self, filename: str, size: int, storage_key: Optional[str], **extra) -> FileRecord:
        record = FileRecord(
            id=self._next_id, filename=filename, size=size, mime_type=None, storage_key=storage_key, **extra
        )
        self.files[record.id] = record
        self._next_id += 1
        return record

    async def create_user(self, username: str, is_admin: bool = False) -> int:
        user_id = len(self.users) + 1
        self.users.add(user_id)
        return user_id

    async def insert_file(self, filename, size, mime_type, storage_key, uploader_id, description=None) -> int:
        record = self.add_file(
            filename, size, storage_key, description=description, uploaded_by=uploader_id
        )
        record.mime_type = mime_type
        return record.id

    async def get_file_by_id(self, file_id: int) -> Optional[FileRecord]:
        record = self.files.get(file_id)
        return replace(record, assigned_user_ids=list(record.assigned_user_ids)) if record else None

    async def list_files(self) -> List[FileRecord]:
        return [replace(r) for r in self.files.values()]

    async def list_files_for_user(self, user_id: int) -> List[FileRecord]:
        return [replace(r) for r in self.files.values() if user_id in r.assigned_user_ids]

    async def update_file_size(self, file_id: int, new_size: int) -> None:
        self._check("update", file_id)
        if file_id not in self.files:
            raise FileNotFound(file_id)
        self.files[file_id].size = new_size

    async def assign_file_to_users(self, file_id: int, user_ids: Iterable[int]) -> None:
        if file_id not in self.files:
            raise FileNotFound(file_id)
        wanted = set(user_ids)
        unknown = wanted - self.users
        if unknown:
            raise UnknownUsers(unknown)
        record = self.files[file_id]
        record.assigned_user_ids = sorted(set(record.assigned_user_ids) | wanted)

    async def delete_file_transactional(self, file_id: int) -> None:
        self._check("delete", file_id)
        if self.files.pop(file_id, None) is None:
            raise FileNotFound(file_id)

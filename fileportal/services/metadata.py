"""Relational metadata for users, files and assignments."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fileportal.core.exceptions import FileNotFound, StorageError, UnknownUsers
from fileportal.db.models import File, FileAssignment, User
from fileportal.db.session import SessionFactory, get_session

logger = logging.getLogger(__name__)


@dataclass
class FileRecord:
    id: int
    filename: str
    size: int
    mime_type: Optional[str]
    storage_key: Optional[str]
    description: Optional[str] = None
    uploaded_by: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    assigned_user_ids: List[int] = field(default_factory=list)


def _to_record(row: File, assigned: Iterable[int] = ()) -> FileRecord:
    return FileRecord(
        id=row.id,
        filename=row.filename,
        size=row.file_size,
        mime_type=row.mime_type,
        storage_key=row.storage_key,
        description=row.description,
        uploaded_by=row.uploaded_by,
        uploaded_at=row.uploaded_at,
        assigned_user_ids=sorted(assigned),
    )


class MetadataStore:
    def __init__(self, session_factory: SessionFactory = get_session):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _scope(self, operation: str, key: Optional[object] = None) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(operation, None if key is None else str(key), type(e).__name__) from e

    async def create_user(self, username: str, is_admin: bool = False) -> int:
        async with self._scope("insert user", username) as session:
            user = User(username=username, is_admin=is_admin)
            session.add(user)
            await session.flush()
            return user.id

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._scope("get user", user_id) as session:
            return await session.get(User, user_id)

    async def insert_file(
        self,
        filename: str,
        size: int,
        mime_type: Optional[str],
        storage_key: Optional[str],
        uploader_id: Optional[int],
        description: Optional[str] = None,
    ) -> int:
        async with self._scope("insert file", storage_key) as session:
            row = File(
                filename=filename,
                file_size=size,
                mime_type=mime_type,
                description=description,
                storage_key=storage_key,
                uploaded_by=uploader_id,
            )
            session.add(row)
            await session.flush()
            logger.info(f"File record {row.id} created for {storage_key}")
            return row.id

    async def get_file_by_id(self, file_id: int) -> Optional[FileRecord]:
        async with self._scope("get file", file_id) as session:
            row = await session.get(File, file_id)
            if row is None:
                return None
            result = await session.execute(
                select(FileAssignment.user_id).where(FileAssignment.file_id == file_id)
            )
            return _to_record(row, result.scalars().all())

    async def _assignments_by_file(self, session, file_ids: List[int]) -> Dict[int, List[int]]:
        out: Dict[int, List[int]] = {file_id: [] for file_id in file_ids}
        if not file_ids:
            return out
        result = await session.execute(
            select(FileAssignment.file_id, FileAssignment.user_id).where(FileAssignment.file_id.in_(file_ids))
        )
        for file_id, user_id in result.all():
            out[file_id].append(user_id)
        return out

    async def list_files(self) -> List[FileRecord]:
        async with self._scope("list files") as session:
            result = await session.execute(select(File).order_by(File.uploaded_at.desc(), File.id.desc()))
            rows = result.scalars().all()
            assigned = await self._assignments_by_file(session, [row.id for row in rows])
            return [_to_record(row, assigned[row.id]) for row in rows]

    async def list_files_for_user(self, user_id: int) -> List[FileRecord]:
        async with self._scope("list files for user", user_id) as session:
            result = await session.execute(
                select(File)
                .join(FileAssignment, FileAssignment.file_id == File.id)
                .where(FileAssignment.user_id == user_id)
                .order_by(File.uploaded_at.desc(), File.id.desc())
            )
            rows = result.scalars().all()
            assigned = await self._assignments_by_file(session, [row.id for row in rows])
            return [_to_record(row, assigned[row.id]) for row in rows]

    async def update_file_size(self, file_id: int, new_size: int) -> None:
        async with self._scope("update file size", file_id) as session:
            result = await session.execute(update(File).where(File.id == file_id).values(file_size=new_size))
            if result.rowcount == 0:
                raise FileNotFound(file_id)

    async def assign_file_to_users(self, file_id: int, user_ids: Iterable[int]) -> None:
        wanted = set(user_ids)
        async with self._scope("assign file", file_id) as session:
            if await session.get(File, file_id) is None:
                raise FileNotFound(file_id)
            if not wanted:
                return
            result = await session.execute(select(User.id).where(User.id.in_(wanted)))
            unknown = wanted - set(result.scalars().all())
            if unknown:
                raise UnknownUsers(unknown)
            result = await session.execute(
                select(FileAssignment.user_id).where(FileAssignment.file_id == file_id)
            )
            existing = set(result.scalars().all())
            for user_id in sorted(wanted - existing):
                session.add(FileAssignment(file_id=file_id, user_id=user_id))

    async def has_file_access(self, user_id: int, file_id: int) -> bool:
        async with self._scope("check access", file_id) as session:
            result = await session.execute(
                select(FileAssignment.id).where(
                    FileAssignment.file_id == file_id, FileAssignment.user_id == user_id
                )
            )
            return result.first() is not None

    async def delete_file_transactional(self, file_id: int) -> None:
        """Delete assignments, then the file row; roll both back if no file row was deleted."""
        async with self._scope("delete file", file_id) as session:
            await session.execute(delete(FileAssignment).where(FileAssignment.file_id == file_id))
            result = await session.execute(delete(File).where(File.id == file_id))
            if result.rowcount == 0:
                raise FileNotFound(file_id)
        logger.info(f"File record {file_id} and its assignments deleted")

import os
import asyncio
import logging
import concurrent.futures
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from .base import BaseStorage, DEFAULT_PAGE_SIZE, ObjectPage, StoredObject
from fileportal.core.config import settings
from fileportal.core.exceptions import StorageError
from fileportal.core.security import create_blob_token

logger = logging.getLogger(__name__)

# Blocking filesystem I/O runs on a small dedicated pool
thread_pool = concurrent.futures.ThreadPoolExecutor(max_workers=4)


class InternalStorage(BaseStorage):
    """Legacy blob store: every key is a file below ``base_path``."""

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or settings.LOCAL_STORAGE_PATH)

    def get_backend_name(self) -> str:
        return "local"

    def local_path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") or "\\" in p for p in parts):
            raise StorageError("resolve", key, "invalid key")
        return self.base_path.joinpath(*parts)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(thread_pool, func, *args)

    def _put_sync(self, key: str, data: bytes) -> None:
        path = self.local_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".part")
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
            logger.debug(f"Blob saved: {key} ({len(data)} bytes)")
        except OSError as e:
            logger.error(f"Error saving blob {key}: {e.strerror}")
            raise StorageError("put", key, e.strerror or type(e).__name__) from e

    async def put_object(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        await self._run(self._put_sync, key, data)

    def _get_sync(self, key: str) -> Optional[bytes]:
        path = self.local_path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError("get", key, e.strerror or type(e).__name__) from e

    async def get_object(self, key: str) -> Optional[bytes]:
        return await self._run(self._get_sync, key)

    def _delete_sync(self, key: str) -> None:
        path = self.local_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError("delete", key, e.strerror or type(e).__name__) from e
        # Drop now-empty parent directories up to the base path
        parent = path.parent
        while parent != self.base_path:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    async def delete_object(self, key: str) -> None:
        await self._run(self._delete_sync, key)

    async def object_exists(self, key: str) -> bool:
        return await asyncio.to_thread(self.local_path(key).is_file)

    def _walk_root(self, prefix: str) -> Path:
        # Deepest directory every matching key must live under
        directory = prefix.rpartition("/")[0]
        if not directory:
            return self.base_path
        try:
            return self.local_path(directory)
        except StorageError:
            return self.base_path

    def _walk_sync(self, prefix: str) -> List[StoredObject]:
        objects: List[StoredObject] = []
        root_dir = self._walk_root(prefix)
        if not root_dir.is_dir():
            return objects
        for root, _dirs, files in os.walk(root_dir):
            for name in files:
                if name.endswith(".part"):
                    continue
                path = Path(root) / name
                key = path.relative_to(self.base_path).as_posix()
                if not key.startswith(prefix):
                    continue
                try:
                    stat = path.stat()
                except OSError:
                    continue  # removed while walking
                objects.append(
                    StoredObject(
                        key=key,
                        size=stat.st_size,
                        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
        objects.sort(key=lambda o: o.key)
        return objects

    async def list_objects(
        self, prefix: str = "", continuation_token: Optional[str] = None, page_size: int = DEFAULT_PAGE_SIZE
    ) -> ObjectPage:
        objects = await self._run(self._walk_sync, prefix)
        if continuation_token:
            objects = [o for o in objects if o.key > continuation_token]
        page = objects[:page_size]
        next_token = page[-1].key if len(objects) > page_size else None
        return ObjectPage(objects=page, next_token=next_token)

    async def signed_url(self, key: str, ttl_seconds: int, direction: str = "download") -> str:
        if direction != "download":
            raise StorageError("sign", key, "local storage only issues download links")
        token = create_blob_token(key, ttl_seconds, direction)
        return f"{settings.SERVICE_BASE_URL.rstrip('/')}/files/blob/{quote(token)}"

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

DEFAULT_PAGE_SIZE = 1000


@dataclass
class StoredObject:
    key: str
    size: int
    last_modified: Optional[datetime] = None


@dataclass
class ObjectPage:
    objects: List[StoredObject] = field(default_factory=list)
    next_token: Optional[str] = None


class BaseStorage(ABC):
    """Key/value blob store. Keys are '/'-separated strings; writes overwrite by key."""

    @abstractmethod
    async def put_object(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        pass

    @abstractmethod
    async def get_object(self, key: str) -> Optional[bytes]:
        """Return the blob's bytes, or None when the key does not exist."""
        pass

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        pass

    @abstractmethod
    async def object_exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def list_objects(
        self, prefix: str = "", continuation_token: Optional[str] = None, page_size: int = DEFAULT_PAGE_SIZE
    ) -> ObjectPage:
        pass

    @abstractmethod
    async def signed_url(self, key: str, ttl_seconds: int, direction: str = "download") -> str:
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        pass

    async def list_all_objects(self, prefix: str = "") -> List[StoredObject]:
        """Follow continuation tokens until the listing is exhausted."""
        objects: List[StoredObject] = []
        token = None
        while True:
            page = await self.list_objects(prefix=prefix, continuation_token=token)
            objects.extend(page.objects)
            if not page.next_token:
                return objects
            token = page.next_token

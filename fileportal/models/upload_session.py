"""Upload session state persisted between chunk requests."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class UploadVariant(str, Enum):
    EAGER = "eager"  # reassembles as soon as the last chunk lands
    LAZY = "lazy"  # chunks re-fetchable; combine is an explicit call


class SessionStatus(str, Enum):
    UPLOADING = "uploading"
    COMPLETED = "completed"  # advisory only, says nothing about chunk completeness


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadSession(BaseModel):
    session_id: str
    variant: UploadVariant
    file_name: str
    declared_size: int = Field(..., gt=0)
    mime_type: str = "application/octet-stream"
    chunk_size: int = Field(..., gt=0)
    total_chunks: int = Field(..., ge=1)
    uploaded_chunks: List[int] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.UPLOADING
    uploader_id: Optional[int] = None
    description: Optional[str] = None
    assigned_user_ids: List[int] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def uploaded_chunk_count(self) -> int:
        return len(self.uploaded_chunks)

    @property
    def is_complete(self) -> bool:
        return self.uploaded_chunk_count == self.total_chunks

    @property
    def missing_chunks(self) -> List[int]:
        present = set(self.uploaded_chunks)
        return [i for i in range(self.total_chunks) if i not in present]

    def expected_chunk_length(self, chunk_index: int) -> int:
        if chunk_index < self.total_chunks - 1:
            return self.chunk_size
        return self.declared_size - self.chunk_size * (self.total_chunks - 1)

    def record_chunks(self, indices) -> None:
        self.uploaded_chunks = sorted({i for i in indices if 0 <= i < self.total_chunks})

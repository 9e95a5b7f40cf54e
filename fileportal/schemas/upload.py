import base64
import binascii
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import Field, field_validator

from fileportal.schemas.common import CamelModel, Envelope


# Requests: one tagged variant per action, selected by the ``action`` field

class InitRequest(CamelModel):
    action: Literal["init"]
    file_name: str = Field(..., min_length=1, max_length=255)
    file_size: int = Field(..., gt=0)
    mime_type: Optional[str] = None
    description: Optional[str] = None
    assigned_user_ids: List[int] = []


class ChunkRequest(CamelModel):
    action: Literal["upload_chunk"]
    session_id: str
    chunk_index: int = Field(..., ge=0)
    chunk_data: bytes

    @field_validator("chunk_data", mode="before")
    @classmethod
    def decode_base64(cls, value):
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError):
                raise ValueError("chunkData must be base64 encoded")
        return value


class GetChunkRequest(CamelModel):
    action: Literal["get_chunk"]
    session_id: str
    chunk_index: int = Field(..., ge=0)


class SessionInfoRequest(CamelModel):
    action: Literal["get_session_info"]
    session_id: str


class MarkCompletedRequest(CamelModel):
    action: Literal["mark_completed"]
    session_id: str


class AbortRequest(CamelModel):
    action: Literal["abort"]
    session_id: str


EagerUploadRequest = Union[InitRequest, ChunkRequest, SessionInfoRequest, AbortRequest]

LazyUploadRequest = Union[
    InitRequest, ChunkRequest, GetChunkRequest, SessionInfoRequest, MarkCompletedRequest, AbortRequest
]


class CombineRequest(CamelModel):
    session_id: str


class InitMetadata(CamelModel):
    """Optional JSON ``metadata`` form field sent with a multipart init."""

    description: Optional[str] = None
    assigned_user_ids: List[int] = []


# Responses

class InitResponse(Envelope):
    session_id: str
    total_chunks: int
    chunk_size: int
    message: str = "Upload session initialized."


class ChunkProgressResponse(Envelope):
    message: str = "Chunk uploaded successfully"
    session_id: str
    chunk_index: int
    uploaded_chunks: int
    total_chunks: int


class FileCompletedResponse(Envelope):
    message: str
    session_id: str
    file_id: int
    file_key: str
    file_name: str
    file_size: int
    original_chunks: int


class ChunkDataResponse(Envelope):
    session_id: str
    chunk_index: int
    chunk_data: str
    chunk_size: int


class SessionInfo(CamelModel):
    session_id: str
    file_name: str
    file_size: int
    mime_type: str
    total_chunks: int
    uploaded_chunks: int
    uploaded_chunk_indices: List[int]
    chunk_size: int
    status: str
    created_at: datetime
    completed_at: Optional[datetime] = None


class SessionInfoResponse(Envelope):
    session: SessionInfo


class MarkCompletedResponse(Envelope):
    message: str = "Session marked as completed"
    session_id: str
    status: str
    total_chunks: int
    uploaded_chunks: int


class AbortResponse(Envelope):
    message: str = "Session and related chunks deleted."
    session_id: str
    chunks_removed: int

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from fileportal.schemas.common import CamelModel, Envelope
from fileportal.services.deletion import DeletionResult
from fileportal.services.metadata import FileRecord


class FileOut(CamelModel):
    id: int
    filename: str
    file_size: int
    mime_type: Optional[str] = None
    description: Optional[str] = None
    uploaded_by: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    assigned_user_ids: List[int] = []

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileOut":
        return cls(
            id=record.id,
            filename=record.filename,
            file_size=record.size,
            mime_type=record.mime_type,
            description=record.description,
            uploaded_by=record.uploaded_by,
            uploaded_at=record.uploaded_at,
            assigned_user_ids=record.assigned_user_ids,
        )


class FileListResponse(Envelope):
    files: List[FileOut]


class DownloadResponse(Envelope):
    file_id: int
    filename: str
    download_url: str
    expires_in: int


class AssignRequest(CamelModel):
    user_ids: List[int] = Field(..., min_length=1)


class AssignResponse(Envelope):
    message: str = "File assigned to users"
    file: FileOut


class DeleteFileRequest(CamelModel):
    file_id: int


class DeleteFileResponse(Envelope):
    message: str
    file_id: int
    blob_key: Optional[str] = None
    blob_deleted: bool
    blob_existed_before: bool
    blob_exists_after: bool
    attempts: int

    @classmethod
    def from_result(cls, result: DeletionResult) -> "DeleteFileResponse":
        return cls(
            message=result.message,
            file_id=result.file_id,
            blob_key=result.blob_key,
            blob_deleted=result.blob_deleted,
            blob_existed_before=result.blob_existed_before,
            blob_exists_after=result.blob_exists_after,
            attempts=result.attempts,
        )

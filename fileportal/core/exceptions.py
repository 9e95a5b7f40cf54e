"""Error taxonomy shared by the upload, reconciliation and deletion services.

Every error carries the HTTP status the request handlers answer with, a short
``error`` title and a ``details`` string naming the session, chunk index, file
id or storage key involved.
"""

from typing import Iterable, Optional


class PortalError(Exception):
    """Base exception for the portal services."""

    status_code: int = 500
    error: str = "Server error"

    def __init__(self, details: str = ""):
        super().__init__(details or self.error)
        self.details = details

    def to_dict(self) -> dict:
        return {"success": False, "error": self.error, "details": self.details}


class SessionNotFound(PortalError):
    status_code = 404
    error = "Upload session not found"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} does not exist or has been cleaned up")
        self.session_id = session_id


class ChunkNotFound(PortalError):
    status_code = 404
    error = "Chunk not found"

    def __init__(self, session_id: str, chunk_index: int):
        super().__init__(f"Chunk {chunk_index} of session {session_id} has not been uploaded yet")
        self.session_id = session_id
        self.chunk_index = chunk_index


class MissingChunk(PortalError):
    status_code = 404

    def __init__(self, session_id: str, chunk_index: int, key: str):
        super().__init__(f"Missing chunk: {key}")
        self.session_id = session_id
        self.chunk_index = chunk_index
        self.key = key
        self.error = f"Chunk {chunk_index} not found"


class IncompleteUpload(PortalError):
    status_code = 400
    error = "Not all chunks uploaded"

    def __init__(self, session_id: str, uploaded: int, total: int):
        super().__init__(f"Uploaded {uploaded}/{total} chunks for session {session_id}")
        self.session_id = session_id
        self.uploaded = uploaded
        self.total = total


class InvalidChunk(PortalError):
    status_code = 400
    error = "Invalid chunk"

    def __init__(self, session_id: str, chunk_index: int, reason: str):
        super().__init__(f"Chunk {chunk_index} of session {session_id}: {reason}")
        self.session_id = session_id
        self.chunk_index = chunk_index


class SizeMismatch(PortalError):
    status_code = 400
    error = "Size mismatch"

    def __init__(self, session_id: str, declared: int, actual: int):
        super().__init__(
            f"Session {session_id} declared {declared} bytes but chunks add up to {actual} bytes"
        )
        self.declared = declared
        self.actual = actual


class PayloadTooLarge(PortalError):
    status_code = 413
    error = "File too large"

    def __init__(self, size: int, limit: int):
        super().__init__(f"File size {size} bytes exceeds the {limit // (1024 * 1024)}MB limit")
        self.size = size
        self.limit = limit


class UnsupportedAction(PortalError):
    status_code = 400
    error = "Invalid action"


class FileNotFound(PortalError):
    status_code = 404
    error = "File not found"

    def __init__(self, file_id: int):
        super().__init__(f"File {file_id} does not exist")
        self.file_id = file_id


class UnknownUsers(PortalError):
    status_code = 400
    error = "Unknown users"

    def __init__(self, user_ids: Iterable[int]):
        self.user_ids = sorted(user_ids)
        super().__init__(f"Users do not exist: {', '.join(str(u) for u in self.user_ids)}")


class StorageError(PortalError):
    """Raised when a blob store or metadata store operation fails."""

    status_code = 500
    error = "Storage error"

    def __init__(self, operation: str, key: Optional[str] = None, reason: str = ""):
        target = f" {key}" if key else ""
        message = f"{operation}{target} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.operation = operation
        self.key = key

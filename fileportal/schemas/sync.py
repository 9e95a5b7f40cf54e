from datetime import datetime
from typing import List, Optional

from fileportal.schemas.common import CamelModel, Envelope


class OrphanedBlob(CamelModel):
    key: str
    size: int
    last_modified: Optional[datetime] = None


class MissingBlob(CamelModel):
    file_id: int
    filename: str
    key: Optional[str] = None
    size: int
    record_deleted: bool


class SizeCorrection(CamelModel):
    file_id: int
    filename: str
    key: str
    old_size: int
    new_size: int


class ReconciliationError(CamelModel):
    operation: str
    key: Optional[str] = None
    file_id: Optional[int] = None
    error: str


class ReconciliationSummary(CamelModel):
    total_blobs: int
    total_records: int
    skipped_upload_keys: int
    orphaned_blobs: int
    missing_blobs: int
    keyless_records: int
    size_corrections: int
    deleted_orphans: int
    deleted_records: int
    errors: int


class ReconciliationReport(CamelModel):
    summary: ReconciliationSummary
    orphaned_blobs: List[OrphanedBlob] = []
    missing_blobs: List[MissingBlob] = []
    keyless_records: List[MissingBlob] = []
    size_corrections: List[SizeCorrection] = []
    deleted_orphans: List[str] = []
    errors: List[ReconciliationError] = []


class SyncResponse(Envelope):
    report: ReconciliationReport


class SessionCleanupResponse(Envelope):
    expired_sessions: List[str]
    count: int

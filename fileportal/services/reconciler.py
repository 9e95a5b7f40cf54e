"""Blob store / metadata store reconciliation.

The blob store is ground truth for sizes. Records whose blob is gone are
removed; blobs without a record are reported, and only deleted when the
caller asks for it. Every item is attempted on its own and its outcome is
accumulated, so one bad row never aborts the pass.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from fileportal.core.exceptions import PortalError
from fileportal.schemas.sync import (
    MissingBlob,
    OrphanedBlob,
    ReconciliationError,
    ReconciliationReport,
    ReconciliationSummary,
    SizeCorrection,
)
from fileportal.services import keys
from fileportal.services.metadata import FileRecord, MetadataStore
from fileportal.services.storage.base import BaseStorage, StoredObject

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ItemResult(Generic[T]):
    """Outcome of one per-item step: either ``value`` or ``error`` is set."""

    operation: str
    key: Optional[str]
    file_id: Optional[int] = None
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_error(self) -> ReconciliationError:
        return ReconciliationError(operation=self.operation, key=self.key, file_id=self.file_id, error=self.error)


async def attempt(
    operation: str, key: Optional[str], action: Callable[[], Awaitable[T]], file_id: Optional[int] = None
) -> ItemResult[T]:
    try:
        return ItemResult(operation=operation, key=key, file_id=file_id, value=await action())
    except PortalError as e:
        logger.error(f"{operation} failed for {key or file_id}: {e.details}")
        return ItemResult(operation=operation, key=key, file_id=file_id, error=e.details or e.error)
    except Exception as e:
        logger.error(f"{operation} failed for {key or file_id}", exc_info=True)
        return ItemResult(operation=operation, key=key, file_id=file_id, error=type(e).__name__)


class ConsistencyReconciler:
    def __init__(self, storage: BaseStorage, metadata: MetadataStore):
        self.storage = storage
        self.metadata = metadata

    async def reconcile(self, delete_orphans: bool = False) -> ReconciliationReport:
        logger.info(f"Starting storage synchronization (delete_orphans={delete_orphans})")

        all_blobs = await self.storage.list_all_objects()
        blobs: Dict[str, StoredObject] = {}
        skipped = 0
        for obj in all_blobs:
            if keys.is_upload_key(obj.key):
                skipped += 1
                continue
            blobs[obj.key] = obj
        logger.info(f"Found {len(blobs)} files in storage ({skipped} in-flight upload keys skipped)")

        records: List[FileRecord] = await self.metadata.list_files()
        logger.info(f"Found {len(records)} files in database")

        record_keys = {r.storage_key for r in records if r.storage_key}
        orphaned = [blobs[key] for key in sorted(blobs) if key not in record_keys]
        missing = [r for r in records if r.storage_key and r.storage_key not in blobs]
        keyless = [r for r in records if not r.storage_key]
        drifted = [
            r for r in records
            if r.storage_key in blobs and blobs[r.storage_key].size != r.size
        ]

        results: List[ItemResult] = []

        size_corrections: List[SizeCorrection] = []
        for record in drifted:
            actual = blobs[record.storage_key].size
            result = await attempt(
                "update size",
                record.storage_key,
                lambda r=record, s=actual: self.metadata.update_file_size(r.id, s),
                file_id=record.id,
            )
            results.append(result)
            if result.ok:
                size_corrections.append(
                    SizeCorrection(
                        file_id=record.id,
                        filename=record.filename,
                        key=record.storage_key,
                        old_size=record.size,
                        new_size=actual,
                    )
                )
        logger.info(f"Updated {len(size_corrections)} file sizes")

        # A blob may have been written after the listing was taken
        confirmed: List[FileRecord] = []
        unverified = set()
        for record in missing:
            result = await attempt(
                "confirm missing",
                record.storage_key,
                lambda k=record.storage_key: self.storage.object_exists(k),
                file_id=record.id,
            )
            if not result.ok:
                results.append(result)
                unverified.add(record.id)
            elif result.value:
                logger.info(f"Blob {record.storage_key} appeared during sync, keeping file record {record.id}")
                continue
            confirmed.append(record)
        missing = confirmed

        deleted_records = 0
        missing_items: List[MissingBlob] = []
        keyless_items: List[MissingBlob] = []
        for record, bucket in [(r, missing_items) for r in missing] + [(r, keyless_items) for r in keyless]:
            deleted = False
            if record.id not in unverified:
                result = await attempt(
                    "delete record",
                    record.storage_key,
                    lambda r=record: self.metadata.delete_file_transactional(r.id),
                    file_id=record.id,
                )
                results.append(result)
                deleted = result.ok
            if deleted:
                deleted_records += 1
            bucket.append(
                MissingBlob(
                    file_id=record.id,
                    filename=record.filename,
                    key=record.storage_key,
                    size=record.size,
                    record_deleted=deleted,
                )
            )

        deleted_orphans: List[str] = []
        if delete_orphans:
            for obj in orphaned:
                result = await attempt("delete blob", obj.key, lambda k=obj.key: self.storage.delete_object(k))
                results.append(result)
                if result.ok:
                    deleted_orphans.append(obj.key)
                    logger.info(f"Deleted orphaned blob: {obj.key}")

        errors = [r.to_error() for r in results if not r.ok]
        summary = ReconciliationSummary(
            total_blobs=len(blobs),
            total_records=len(records),
            skipped_upload_keys=skipped,
            orphaned_blobs=len(orphaned),
            missing_blobs=len(missing),
            keyless_records=len(keyless),
            size_corrections=len(size_corrections),
            deleted_orphans=len(deleted_orphans),
            deleted_records=deleted_records,
            errors=len(errors),
        )
        logger.info(f"Synchronization finished: {summary.model_dump()}")

        return ReconciliationReport(
            summary=summary,
            orphaned_blobs=[
                OrphanedBlob(key=obj.key, size=obj.size, last_modified=obj.last_modified) for obj in orphaned
            ],
            missing_blobs=missing_items,
            keyless_records=keyless_items,
            size_corrections=size_corrections,
            deleted_orphans=deleted_orphans,
            errors=errors,
        )

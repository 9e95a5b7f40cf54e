"""Removes one logical file from the blob store and the metadata store.

The blob is deleted best-effort with bounded, settle-and-recheck retries; the
metadata record is always deleted afterwards. A leftover blob is an orphan the
reconciler can remove later, whereas a record without a blob breaks downloads.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fileportal.core.exceptions import FileNotFound, StorageError
from fileportal.services.metadata import MetadataStore
from fileportal.services.retry import RetryPolicy
from fileportal.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


@dataclass
class DeletionResult:
    file_id: int
    blob_key: Optional[str]
    blob_deleted: bool
    blob_existed_before: bool
    blob_exists_after: bool
    attempts: int

    @property
    def message(self) -> str:
        if not self.blob_existed_before:
            return "File deleted from database (no storage data present)"
        if self.blob_deleted:
            return "File and associated storage data successfully deleted"
        return "File deleted from database, but storage deletion failed"


class DeletionCoordinator:
    def __init__(self, storage: BaseStorage, metadata: MetadataStore, retry_policy: Optional[RetryPolicy] = None):
        self.storage = storage
        self.metadata = metadata
        self.retry_policy = retry_policy or RetryPolicy.for_blob_delete()

    async def delete_file(self, file_id: int) -> DeletionResult:
        record = await self.metadata.get_file_by_id(file_id)
        if record is None:
            raise FileNotFound(file_id)

        blob_key = record.storage_key
        logger.info(f"Starting deletion of file {file_id} with blob key: {blob_key}")

        existed_before = False
        exists_after = False
        attempts = 0
        if not blob_key:
            logger.warning(f"No blob key found for file {file_id}")
        else:
            try:
                existed_before = await self.storage.object_exists(blob_key)
            except StorageError as e:
                logger.warning(f"Existence check failed for {blob_key}, attempting deletion anyway: {e.details}")
                existed_before = True
            if existed_before:
                exists_after, attempts = await self._delete_blob(blob_key)

        blob_deleted = not exists_after
        logger.info(
            f"Blob deletion status for {blob_key} - existed before: {existed_before}, "
            f"exists after: {exists_after}, deleted: {blob_deleted}"
        )

        await self.metadata.delete_file_transactional(file_id)
        logger.info(f"File {file_id} deleted from database")

        return DeletionResult(
            file_id=file_id,
            blob_key=blob_key,
            blob_deleted=blob_deleted,
            blob_existed_before=existed_before,
            blob_exists_after=exists_after,
            attempts=attempts,
        )

    async def _delete_blob(self, key: str):
        """Delete, settle, re-check; returns (still_exists, attempts_made)."""
        still_exists = True
        attempt = 0
        while attempt < self.retry_policy.max_attempts and still_exists:
            attempt += 1
            try:
                await self.storage.delete_object(key)
            except StorageError as e:
                logger.error(f"Delete attempt {attempt} failed for {key}: {e.details}")
            await self.retry_policy.pause(attempt)
            try:
                still_exists = await self.storage.object_exists(key)
            except StorageError as e:
                logger.error(f"Existence re-check failed for {key}: {e.details}")
                still_exists = True
            if still_exists:
                logger.warning(f"Blob still present after delete attempt {attempt}: {key}")
        return still_exists, attempt

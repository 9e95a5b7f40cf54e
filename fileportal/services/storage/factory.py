import logging
from typing import Callable, Dict, Optional

from fileportal.core.config import settings
from .base import BaseStorage
from .internal import InternalStorage
from .s3 import S3Storage

logger = logging.getLogger(__name__)

_BACKENDS: Dict[str, Callable[[], BaseStorage]] = {
    "s3": S3Storage,
    "local": InternalStorage,
}

_storage: Optional[BaseStorage] = None


def get_storage() -> BaseStorage:
    """Return the process-wide blob store selected by ``STORAGE_BACKEND``."""
    global _storage
    if _storage is None:
        try:
            backend = _BACKENDS[settings.STORAGE_BACKEND.lower()]
        except KeyError:
            raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}") from None
        _storage = backend()
        logger.info(f"Blob storage backend ready: {_storage.get_backend_name()}")
    return _storage


def reset_storage() -> None:
    global _storage
    _storage = None

"""Blob key layout.

Upload sessions and their chunks live under ``UPLOAD_KEY_PREFIX``; reassembled
files live under ``FILE_KEY_PREFIX``. The reconciler relies on this split to
tell in-flight upload data apart from orphaned files.
"""

import re
import secrets
from datetime import datetime, timezone
from typing import Optional

from fileportal.core.config import settings

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sessions_prefix() -> str:
    return f"{settings.UPLOAD_KEY_PREFIX}sessions/"


def chunks_root() -> str:
    return f"{settings.UPLOAD_KEY_PREFIX}chunks/"


def session_key(session_id: str) -> str:
    return f"{sessions_prefix()}{session_id}.json"


def session_id_from_key(key: str) -> Optional[str]:
    prefix = sessions_prefix()
    if not key.startswith(prefix) or not key.endswith(".json"):
        return None
    return key[len(prefix):-len(".json")]


def chunk_prefix(session_id: str) -> str:
    return f"{chunks_root()}{session_id}/"


def chunk_key(session_id: str, chunk_index: int) -> str:
    return f"{chunk_prefix(session_id)}{chunk_index:06d}"


def chunk_index_from_key(session_id: str, key: str) -> Optional[int]:
    prefix = chunk_prefix(session_id)
    if not key.startswith(prefix):
        return None
    suffix = key[len(prefix):]
    return int(suffix) if suffix.isdigit() else None


def session_id_from_chunk_key(key: str) -> Optional[str]:
    root = chunks_root()
    if not key.startswith(root):
        return None
    session_id, sep, _ = key[len(root):].partition("/")
    return session_id if sep else None


def is_upload_key(key: str) -> bool:
    return key.startswith(settings.UPLOAD_KEY_PREFIX)


def safe_file_name(file_name: str) -> str:
    return _UNSAFE_CHARS.sub("_", file_name)[:200] or "file"


def final_file_key(file_name: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"{settings.FILE_KEY_PREFIX}{millis}-{secrets.token_hex(4)}-{safe_file_name(file_name)}"

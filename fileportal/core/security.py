from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError
from pydantic import ValidationError

from fileportal.core.config import settings
from fileportal.schemas.token import TokenData

security = HTTPBearer()

BLOB_TOKEN_PURPOSE = "blob"


@dataclass(frozen=True)
class Caller:
    """Verified identity of the user behind a request."""

    user_id: int
    is_admin: bool


def _decode(token: str) -> Dict[str, Any]:
    options = {"verify_aud": settings.EXPECTED_JWT_AUDIENCE is not None}
    return jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.EXPECTED_JWT_AUDIENCE,
        issuer=settings.EXPECTED_JWT_ISSUER,
        options=options,
    )


def get_current_caller(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Caller:
    try:
        payload = _decode(credentials.credentials)
        token_data = TokenData.model_validate(payload)
        return Caller(user_id=int(token_data.sub), is_admin=token_data.is_admin)
    except InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")
    except (ValidationError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: bad subject.")


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return caller


def create_blob_token(key: str, ttl_seconds: int, direction: str = "download") -> str:
    """Sign a short-lived token naming one blob key (used by the local backend's signed links)."""
    payload = {
        "purpose": BLOB_TOKEN_PURPOSE,
        "key": key,
        "direction": direction,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def read_blob_token(token: str, direction: str = "download") -> str:
    """Return the blob key a signed link grants access to."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired link.")
    if payload.get("purpose") != BLOB_TOKEN_PURPOSE or payload.get("direction") != direction:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired link.")
    return payload["key"]

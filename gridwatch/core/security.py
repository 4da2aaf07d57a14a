from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from passlib.context import CryptContext

from gridwatch.core.config import Settings

READ_SCOPE = "pmu:read"
CONTROL_SCOPE = "pmu:control"
ADMIN_SCOPES = [READ_SCOPE, CONTROL_SCOPE]

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def check_admin_credentials(*, username: str, password: str, settings: Settings) -> bool:
    if username != settings.admin_username:
        return False
    return verify_password(password, settings.admin_password_hash)


def create_access_token(
    *,
    subject: str,
    scopes: list[str],
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(tz=timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload: dict[str, Any] = {
        "sub": subject,
        "scopes": scopes,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, *, settings: Settings) -> tuple[str, list[str]]:
    """Return (subject, scopes); raises jwt.PyJWTError or ValueError on a bad token."""
    payload = jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.algorithm],
        options={"require": ["exp", "sub"]},
    )
    sub = payload.get("sub")
    scopes = payload.get("scopes", [])
    if not isinstance(sub, str) or not isinstance(scopes, list):
        raise ValueError("Malformed token claims")
    return sub, [str(s) for s in scopes]

"""Authentication service for the dashboard operator."""

import hashlib
import hmac
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from campaign_dialer.config import get_settings


def _simple_hash(password: str) -> str:
    """SHA256 of the password; the operator password lives in settings, not a user table."""
    return hashlib.sha256(password.encode()).hexdigest()


def get_user(username: str) -> dict[str, Any] | None:
    """The single operator account configured in settings."""
    settings = get_settings()
    if not username or username != settings.operator_username:
        return None
    return {
        "id": "operator",
        "username": settings.operator_username,
        "hashed_password": _simple_hash(settings.operator_password),
        "role": "admin",
        "is_active": True,
    }


def authenticate_user(username: str, password: str) -> dict[str, Any] | None:
    """Authenticate the operator."""
    user = get_user(username)
    if not user:
        return None
    if not hmac.compare_digest(_simple_hash(password), user["hashed_password"]):
        return None
    return user


def _encode(data: dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    settings = get_settings()
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(UTC) + expires_delta, "type": token_type})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    settings = get_settings()
    delta = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    return _encode(data, "access", delta)


def create_refresh_token(data: dict[str, Any]) -> str:
    """Create a JWT refresh token."""
    settings = get_settings()
    return _encode(data, "refresh", timedelta(days=settings.refresh_token_expire_days))


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def verify_token(token: str, token_type: str) -> dict[str, Any] | None:
    """Decode a token and check it is of the expected type."""
    payload = decode_token(token)
    if payload is None or payload.get("type") != token_type:
        return None
    return payload

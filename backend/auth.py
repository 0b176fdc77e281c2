from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
from fastapi import Header
from typing import Optional

from core.config import settings
from core.exceptions import UnauthorizedError


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=settings.jwt_expiration_days)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return encoded_jwt


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        return payload
    except JWTError:
        raise UnauthorizedError("Invalid token")


def get_current_token_payload(authorization: Optional[str] = Header(None)) -> dict:
    """Bearer token claims; must carry user_id and role."""
    if not authorization:
        raise UnauthorizedError("Token not provided")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise UnauthorizedError("Invalid token format")
    if scheme.lower() != "bearer":
        raise UnauthorizedError("Invalid authentication scheme")

    payload = decode_token(token)
    if not payload.get("user_id") or not payload.get("role"):
        raise UnauthorizedError("Invalid token")
    return payload

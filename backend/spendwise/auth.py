import hashlib
import logging
import secrets
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError
from psycopg import AsyncConnection

from .config import settings
from .database import get_db_connection
from .services.profile_service import find_user_by_api_key_hash

logger = logging.getLogger(__name__)

http_bearer = HTTPBearer(auto_error=False)

API_KEY_BYTES = 32


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    """Return a fresh URL-safe import key. Only its hash is ever stored."""
    return f"sw_{secrets.token_urlsafe(API_KEY_BYTES)}"


def _decode_token(token: str, *, expected_type: str) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    token_type = payload.get("type")
    if token_type != expected_type:
        raise HTTPException(status_code=401, detail="Invalid token type")

    return payload


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> UUID:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing bearer token")

    payload = _decode_token(credentials.credentials, expected_type="access")

    subject = payload.get("sub")
    try:
        return UUID(subject)
    except (TypeError, ValueError) as exc:
        raise HTTPException(
            status_code=401, detail="Invalid token subject") from exc


async def get_api_key_user_id(
    x_api_key: str | None = Header(default=None),
    connection: AsyncConnection = Depends(get_db_connection),
) -> UUID:
    """Resolve the owner of an import API key sent in the X-API-Key header."""
    if not x_api_key:
        logger.info("API key validation failed: no X-API-Key header provided")
        raise HTTPException(
            status_code=401,
            detail="API key is required. Please provide X-API-Key header.",
        )

    user_id = await find_user_by_api_key_hash(connection, hash_api_key(x_api_key))
    if user_id is None:
        logger.info("No user found with API key %s...", x_api_key[:8])
        raise HTTPException(status_code=401, detail="Invalid API key")

    return user_id

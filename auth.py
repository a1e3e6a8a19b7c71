import logging
from typing import Optional

from fastapi import Header
from jose import JWTError, jwt

import config
from exceptions import Unauthorized

logger = logging.getLogger(__name__)


def verify_token(token: str) -> str:
    """Decode and validate a bearer JWT, returning its subject. Raises Unauthorized on failure."""
    options = {"verify_aud": config.JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            audience=config.JWT_AUDIENCE,
            options=options,
        )
    except JWTError as e:
        logger.warning(f"Token verification failed: {e}")
        raise Unauthorized("Invalid or expired token") from e

    subject = payload.get("sub")
    if not subject:
        raise Unauthorized("Invalid or expired token")
    return subject


def require_sender(authorization: Optional[str] = Header(None)) -> str:
    """FastAPI dependency for sender-only endpoints."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Missing Authorization: Bearer <token>")
    return verify_token(token.strip())

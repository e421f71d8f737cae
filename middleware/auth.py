"""
Bearer token verification
Sessions are issued by the external identity provider; we only verify them
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError, jwt

from config import Config
from utils.error_handler import AuthenticationError

logger = logging.getLogger(__name__)


def _mask(value: Optional[str]) -> str:
    value = (value or "").strip()
    if len(value) <= 8:
        return value or "-"
    return f"{value[:4]}...{value[-4:]}"


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    value = authorization.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None


def decode_user_id(token: str) -> str:
    """Verify the token signature and return its subject (the user id)"""
    options = {"verify_aud": Config.AUTH_JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            Config.AUTH_JWT_SECRET,
            algorithms=[Config.AUTH_JWT_ALGORITHM],
            audience=Config.AUTH_JWT_AUDIENCE,
            options=options,
        )
    except JWTError as e:
        logger.info(f"🔐 AUTH: rejected token {_mask(token)}: {e}")
        raise AuthenticationError()

    subject = payload.get("sub")
    if not subject:
        logger.info(f"🔐 AUTH: token {_mask(token)} has no subject")
        raise AuthenticationError()
    return str(subject)


def get_bearer_token(request: Request) -> str:
    """FastAPI dependency: raw bearer token, 401 when absent"""
    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        raise AuthenticationError()
    return token


def get_current_user_id(token: str = Depends(get_bearer_token)) -> str:
    """FastAPI dependency: authenticated caller id"""
    return decode_user_id(token)

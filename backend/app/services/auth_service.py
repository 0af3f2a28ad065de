import logging
import secrets
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Request
from jwt.exceptions import InvalidTokenError as JWTError

from app.config import settings
from app.models.account import Account
from app.services.credit_meter import MongoAccountStore
from app.utils import utcnow

logger = logging.getLogger("betai.auth")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def decode_jwt(token: str) -> dict:
    """Decode a JWT, trying the current secret first, then the old one.

    Allows zero-downtime rotation of JWT_SECRET: set JWT_SECRET_OLD to the
    previous value until every token signed with it has expired.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        if settings.JWT_SECRET_OLD:
            return jwt.decode(token, settings.JWT_SECRET_OLD, algorithms=[ALGORITHM])
        raise


def create_access_token(user_id: str, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    payload = {
        "sub": user_id,
        "exp": utcnow() + timedelta(minutes=expires_minutes),
        "type": "access",
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first (mobile client), then the access_token cookie."""
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get("access_token")


async def get_optional_account(request: Request) -> Optional[Account]:
    """FastAPI dependency: resolve the caller to an Account, or None.

    Returning None (instead of raising 401) lets the generation endpoint
    answer with its own structured failure body.
    """
    token = extract_token(request)
    if not token:
        return None

    try:
        payload = decode_jwt(token)
    except JWTError:
        logger.info("Rejected invalid access token")
        return None

    if payload.get("type", "access") != "access":
        return None

    # Tokens issued by the legacy Node backend carry ``userId``.
    user_id = payload.get("sub") or payload.get("userId")
    if not user_id:
        return None

    return await MongoAccountStore().get_account(str(user_id))

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException

from agrisense import config
from agrisense.services import database

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
JWT_AUDIENCE = "authenticated"


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return authorization.strip() or None


def decode_access_token(token: str, secret: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Verify an access token issued by the auth service; None if invalid."""
    secret = secret or config.get_jwt_secret()
    if not secret:
        return None
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALG], audience=JWT_AUDIENCE)
    except jwt.PyJWTError as e:
        logger.info("Rejected access token: %s", e)
        return None


def resolve_user(token: str) -> Optional[Dict[str, Any]]:
    """Local JWT verification when a secret is configured, else ask the auth service."""
    if config.get_jwt_secret():
        data = decode_access_token(token)
        if not data or not data.get("sub"):
            return None
        return {"id": data["sub"], "email": data.get("email")}
    try:
        return database.get_user(token)
    except database.DataAccessError:
        return None


def get_current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """FastAPI dependency: the authenticated user or 401."""
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="authentication_required")
    user = resolve_user(token)
    if not user:
        raise HTTPException(status_code=401, detail="invalid_token")
    return user

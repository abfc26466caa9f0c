"""
Authentication helpers: password hashing, JWT tokens and object ids.
"""
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

import bcrypt
import jwt

from core.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRES_HOURS

OBJECT_ID_PATTERN = re.compile(r"^[a-f\d]{24}$", re.IGNORECASE)
OBJECT_ID_SEARCH = re.compile(r"[a-f\d]{24}", re.IGNORECASE)


class TokenError(Exception):
    """Raised when a bearer token is missing, expired or malformed."""
    pass


def new_object_id() -> str:
    """Generate a 24-hex identifier compatible with the original document ids."""
    return uuid.uuid4().hex[:24]


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))


def extract_object_id(value: Any) -> Optional[str]:
    """
    Return a valid object id from a raw identifier.

    Composite identifiers such as "cats-<id>" carry the id somewhere inside
    the string; the first 24-hex run is used.
    """
    if is_object_id(value):
        return value
    if isinstance(value, str):
        match = OBJECT_ID_SEARCH.search(value)
        if match:
            return match.group(0)
    return None


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a signed access token for a user."""
    expires_at = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=JWT_EXPIRES_HOURS))
    payload = {
        "user_id": user_id,
        "role": role,
        "type": "access",
        "exp": expires_at,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate an access token, raising TokenError on failure."""
    if not token:
        raise TokenError("No token provided")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenError("Token expired")
    except jwt.InvalidTokenError:
        raise TokenError("Invalid token")

    if payload.get("type") != "access" or not payload.get("user_id"):
        raise TokenError("Malformed token")
    return payload

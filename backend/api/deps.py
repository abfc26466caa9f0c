"""
Authentication dependencies shared by the routers.
"""
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, HTTPException, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.errors import ServiceError
from core.security import TokenError, decode_access_token
from services.auth.user_service import get_user

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def http_error(error: ServiceError) -> HTTPException:
    """Translate a service failure into the HTTP error the clients expect."""
    return HTTPException(status_code=error.status_code, detail=error.message)


def _user_from_token(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    try:
        payload = decode_access_token(token)
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))

    user = get_user(payload["user_id"])
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    return _user_from_token(credentials.credentials if credentials else None)


def get_user_from_header_or_query(
    token: Optional[str] = Query(default=None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """For embedded files (img/iframe) that cannot send an Authorization header."""
    return _user_from_token(credentials.credentials if credentials else token)


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user["role"] not in roles:
            logger.info("User %s with role %s denied (needs %s)", user["user_id"], user["role"], roles)
            raise HTTPException(status_code=403, detail="Access denied. Insufficient permissions.")
        return user

    return dependency

"""
Admin content status routes: moderation listing and bulk deletion.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from api.deps import require_roles
from core.config import ADMIN_ROLES
from services.moderation import content_status

router = APIRouter()


@router.get("/content-status")
async def get_content_status(user: Dict[str, Any] = Depends(require_roles(*ADMIN_ROLES))):
    return content_status.list_content_status(user)


@router.delete("/content-status")
async def delete_content(
    body: Optional[Dict[str, Any]] = Body(default=None),
    user: Dict[str, Any] = Depends(require_roles(*ADMIN_ROLES)),
):
    """
    Delete one item or a batch ({items: [...]}).

    Answers 200 when every item went, 207 with per-item results when only
    some did, 403 when the caller may delete none of them and 400 when
    none went for any other reason.
    """
    body = body or {}
    items = body.get("items")
    if not isinstance(items, list) or not items:
        items = [body]
    status_code, result = content_status.delete_content(user, items)
    return JSONResponse(status_code=status_code, content=result)

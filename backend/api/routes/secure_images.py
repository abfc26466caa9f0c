"""
Secure assessment image routes used by the secure viewer.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse

from api.deps import get_current_user, http_error
from api.models.requests import LogAccessRequest
from api.models.responses import MessageResponse, SecureMetadataResponse
from core.config import ContentConfig
from core.errors import ServiceError
from services.assessments import assessment_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/metadata/{kind}/{assessment_id}", response_model=SecureMetadataResponse)
async def secure_metadata(kind: str, assessment_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return {"success": True, "data": assessment_service.secure_metadata(kind, assessment_id)}
    except ServiceError as e:
        raise http_error(e)


@router.get("/{kind}/{assessment_id}")
async def secure_file(kind: str, assessment_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    """Stream the assessment file with caching and framing disabled."""
    try:
        path, content_type = assessment_service.secure_file(user, kind, assessment_id)
    except ServiceError as e:
        raise http_error(e)
    return FileResponse(path, media_type=content_type, headers=dict(ContentConfig.SECURE_RESPONSE_HEADERS))


@router.post("/log-access", response_model=MessageResponse)
async def log_access(
    body: LogAccessRequest,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
):
    assessment_service.log_access(
        user_id=user["user_id"],
        assessment_id=body.assessment_id,
        assessment_type=body.assessment_type,
        action=body.action,
        timestamp=body.timestamp,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return {"message": "Access logged successfully"}

"""
Admin assessment routes: listing, publishing and deleting CATs and exams.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.deps import http_error, require_roles
from api.models.requests import PublishRequest
from api.models.responses import AssessmentListResponse, AssessmentResponse, MessageResponse
from core.config import ADMIN_ROLES
from core.errors import ServiceError
from services.assessments import assessment_service

router = APIRouter()

admin_user = require_roles(*ADMIN_ROLES)


@router.get("/assessments", response_model=AssessmentListResponse)
async def list_assessments(user: Dict[str, Any] = Depends(admin_user)):
    return {"assessments": assessment_service.list_assessments(user)}


@router.get("/my-assessments", response_model=AssessmentListResponse)
async def list_my_assessments(user: Dict[str, Any] = Depends(admin_user)):
    return {"assessments": assessment_service.list_my_assessments(user)}


@router.patch("/{kind}/{assessment_id}/publish", response_model=AssessmentResponse)
async def publish(
    kind: str,
    assessment_id: str,
    request: PublishRequest,
    user: Dict[str, Any] = Depends(admin_user),
):
    try:
        assessment = assessment_service.publish_assessment(user, kind, assessment_id, request.status)
    except ServiceError as e:
        raise http_error(e)
    return {"message": f"Assessment {request.status}", "assessment": assessment}


@router.delete("/{kind}/{assessment_id}", response_model=MessageResponse)
async def delete(kind: str, assessment_id: str, user: Dict[str, Any] = Depends(admin_user)):
    try:
        assessment_service.delete_assessment(user, kind, assessment_id)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Assessment deleted successfully"}

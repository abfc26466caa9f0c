"""
Public catalog routes: institutions, courses and approved resources.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_current_user, http_error
from core.config import ContentConfig
from core.errors import ServiceError
from services.catalog import repository

router = APIRouter()


@router.get("/institutions")
async def list_institutions():
    return {"institutions": repository.list_institutions()}


@router.get("/institutions/{institution_id}")
async def get_institution(institution_id: str):
    try:
        return {"institution": repository.get_institution(institution_id)}
    except ServiceError as e:
        raise http_error(e)


@router.get("/courses")
async def list_courses(institution: Optional[str] = Query(default=None)):
    return {"courses": repository.list_courses(institution)}


@router.get("/courses/{course_id}")
async def get_course(course_id: str):
    """Course with its units and the periods offered per year."""
    try:
        return {"course": repository.get_course(course_id)}
    except ServiceError as e:
        raise http_error(e)


@router.get("/resources")
async def list_resources(
    course: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    user: Dict[str, Any] = Depends(get_current_user),
):
    """
    Approved resources; file references of premium items are withheld
    here and only handed out by the student content endpoint.
    """
    resources = repository.list_content_assets(
        course_id=course, type=type, statuses=ContentConfig.STUDENT_VISIBLE_STATUSES
    )
    for resource in resources:
        if resource["isPremium"]:
            resource["filename"] = None
            resource["url"] = None
    return {"resources": resources}

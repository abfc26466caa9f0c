"""
Student course content route.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_current_user, http_error
from core.errors import ServiceError
from services.catalog.content_service import student_course_content

router = APIRouter()


@router.get("/course/{course_id}/content")
async def course_content(
    course_id: str,
    year: Optional[int] = Query(default=None, ge=1),
    semester: Optional[int] = Query(default=None, ge=1),
    user: Dict[str, Any] = Depends(get_current_user),
):
    """Approved content of a course with per-resource access flags."""
    try:
        return student_course_content(user["user_id"], course_id, year=year, semester=semester)
    except ServiceError as e:
        raise http_error(e)

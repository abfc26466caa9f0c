"""
Upload routes: assessment files from admins and embedded file serving.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse

from api.deps import get_user_from_header_or_query, http_error, require_roles
from api.models.responses import AssessmentResponse
from core.config import ADMIN_ROLES
from core.errors import ServiceError
from services.assessments import assessment_service
from services.catalog.content_service import resolve_upload

router = APIRouter()


@router.post("/assessment", response_model=AssessmentResponse, status_code=201)
async def upload_assessment(
    file: Optional[UploadFile] = File(default=None),
    title: Optional[str] = Form(default=None),
    courseId: Optional[str] = Form(default=None),
    unitId: Optional[str] = Form(default=None),
    unitName: Optional[str] = Form(default=None),
    assessmentType: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    academicYear: Optional[str] = Form(default=None),
    period: Optional[str] = Form(default=None),
    instructions: Optional[str] = Form(default=None),
    dueDate: Optional[str] = Form(default=None),
    totalMarks: Optional[str] = Form(default=None),
    duration: Optional[str] = Form(default=None),
    user: Dict[str, Any] = Depends(require_roles(*ADMIN_ROLES)),
):
    """Upload a CAT, assignment or past exam; it waits for approval."""
    fields = {
        "title": title,
        "courseId": courseId,
        "unitId": unitId,
        "unitName": unitName,
        "assessmentType": assessmentType,
        "description": description,
        "academicYear": academicYear,
        "period": period,
        "instructions": instructions,
        "dueDate": dueDate,
        "totalMarks": totalMarks,
        "duration": duration,
    }
    content = await file.read() if file is not None else None
    try:
        assessment = assessment_service.upload_assessment(
            user, fields, file.filename if file is not None else None, content
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Assessment uploaded successfully and is pending approval", "assessment": assessment}


@router.get("/file/{filename}")
async def serve_file(filename: str, user: Dict[str, Any] = Depends(get_user_from_header_or_query)):
    """Serve an uploaded file; the token may come as ?token= for embedding."""
    try:
        path, content_type = resolve_upload(user, filename)
    except ServiceError as e:
        raise http_error(e)
    return FileResponse(path, media_type=content_type, headers={"Cache-Control": "private, no-store"})

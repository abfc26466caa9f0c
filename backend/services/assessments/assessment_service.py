"""
Assessment (CAT, assignment, past exam) uploads, admin management, the
secure-image lookups and the viewing access log.
"""
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.config import (
    ADMIN_ROLES,
    ASSESSMENT_UPLOADS_DIR,
    MAX_ASSESSMENT_FILE_BYTES,
    ContentConfig,
)
from core.database import db, row_to_dict
from core.errors import (
    ContentNotFoundError,
    PermissionDeniedError,
    SubscriptionRequiredError,
    ValidationFailed,
)
from core.security import is_object_id, new_object_id
from core.transaction import transaction_manager
from services.catalog import repository
from services.catalog.academic_calendar import normalize_academic_year, normalize_period
from services.payments.subscription_service import has_active_subscription

logger = logging.getLogger(__name__)

# URL segment of the admin publish/delete endpoints -> stored type
ADMIN_KINDS = {"cats": "cats", "exams": "pastExams"}

_TYPE_ALIASES = {
    "cat": "cats",
    "cats": "cats",
    "assignment": "assignments",
    "assignments": "assignments",
    "exam": "pastExams",
    "pastexam": "pastExams",
    "pastexams": "pastExams",
}

PUBLISH_STATUSES = ("published", "draft")

DEFAULT_INSTRUCTIONS = (
    "Read all questions carefully. No external materials allowed. "
    "This is a secure assessment environment."
)

REQUIRED_UPLOAD_FIELDS = ("title", "courseId", "unitId", "assessmentType")


def normalize_assessment_type(value: Optional[str]) -> str:
    stored = _TYPE_ALIASES.get((value or "").strip().lower())
    if stored is None:
        raise ValidationFailed("Invalid assessment type")
    return stored


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"Expected a whole number, got {value!r}")


def assessment_to_api(row: Dict[str, Any], uploader_name: Optional[str] = None) -> Dict[str, Any]:
    data = {
        "id": row["assessment_id"],
        "_id": row["assessment_id"],
        "assessmentId": row["assessment_id"],
        "type": row["type"],
        "courseId": row["course_id"],
        "unitId": row["unit_id"],
        "unitName": row.get("unit_name"),
        "title": row["title"],
        "description": row.get("description") or "",
        "academicYear": row.get("academic_year"),
        "period": row.get("period"),
        "instructions": row.get("instructions") or "",
        "dueDate": row.get("due_date"),
        "totalMarks": row.get("total_marks"),
        "duration": row.get("duration"),
        "filename": row.get("filename"),
        "status": row["status"],
        "isPremium": bool(row.get("is_premium")),
        "uploadedBy": row.get("uploaded_by"),
        "reviewNotes": row.get("review_notes"),
        "createdAt": row.get("created_at"),
    }
    if uploader_name:
        data["createdBy"] = uploader_name
    return data


def _get_row(assessment_id: str) -> Optional[Dict[str, Any]]:
    return row_to_dict(db.execute_one("SELECT * FROM assessments WHERE assessment_id = ?", (assessment_id,)))


def _can_manage(user: Dict[str, Any], row: Dict[str, Any]) -> bool:
    """Super admins manage everything; mini admins their own or unowned uploads."""
    if user["role"] == "super_admin":
        return True
    return user["role"] == "mini_admin" and row.get("uploaded_by") in (None, user["user_id"])


# ----------------------------------------------------------------------
# Upload
# ----------------------------------------------------------------------

def upload_assessment(
    user: Dict[str, Any],
    fields: Dict[str, Any],
    original_filename: Optional[str],
    content: Optional[bytes],
) -> Dict[str, Any]:
    """
    Store an uploaded assessment file and queue it for approval.

    The file is written first and removed again if the database insert
    fails.
    """
    if not content or not original_filename:
        raise ValidationFailed("No image file uploaded")

    missing = [name for name in REQUIRED_UPLOAD_FIELDS if not fields.get(name)]
    if missing:
        raise ValidationFailed("Missing required fields: " + ", ".join(REQUIRED_UPLOAD_FIELDS))

    assessment_type = normalize_assessment_type(fields.get("assessmentType"))

    extension = Path(original_filename).suffix.lower()
    if extension not in ContentConfig.SECURE_FILE_CONTENT_TYPES:
        raise ValidationFailed("Only image and PDF files are allowed")
    if len(content) > MAX_ASSESSMENT_FILE_BYTES:
        raise ValidationFailed(f"File too large (max {MAX_ASSESSMENT_FILE_BYTES // (1024 * 1024)}MB)")

    course = repository.get_course_row(fields["courseId"])
    unit = repository.get_unit(fields["unitId"])
    if unit["courseId"] != course["course_id"]:
        raise ContentNotFoundError("Unit not found")

    due_date = fields.get("dueDate") or None
    assessment_id = new_object_id()
    stored_name = f"{assessment_type}-{uuid.uuid4().hex}{extension}"
    file_path = ASSESSMENT_UPLOADS_DIR / stored_name

    with transaction_manager.transaction() as conn:
        file_path.write_bytes(content)
        transaction_manager.register_compensation(lambda: file_path.unlink(missing_ok=True))

        conn.execute(
            """
            INSERT INTO assessments
                (assessment_id, type, course_id, unit_id, unit_name, title, description, academic_year,
                 period, instructions, due_date, total_marks, duration, filename, file_path, status,
                 is_premium, uploaded_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                assessment_id,
                assessment_type,
                course["course_id"],
                unit["id"],
                fields.get("unitName") or unit["unitName"],
                fields["title"].strip(),
                fields.get("description") or "",
                normalize_academic_year(fields.get("academicYear"), due_date),
                normalize_period(fields.get("period"), due_date),
                fields.get("instructions") or "",
                due_date,
                _to_int(fields.get("totalMarks")),
                _to_int(fields.get("duration")),
                stored_name,
                str(file_path),
                "pending",
                0 if assessment_type in ContentConfig.FREE_CONTENT_TYPES else 1,
                user["user_id"],
                datetime.now(timezone.utc).isoformat(),
            ),
        )

    logger.info(
        "%s assessment %s uploaded by %s for unit %s (pending approval)",
        assessment_type, assessment_id, user["user_id"], unit["id"],
    )
    return assessment_to_api(_get_row(assessment_id))


# ----------------------------------------------------------------------
# Admin listing, publish, delete
# ----------------------------------------------------------------------

def list_assessments(user: Dict[str, Any]) -> List[Dict[str, Any]]:
    """All assessments for super admins; a mini admin sees their own and unowned ones."""
    if user["role"] == "super_admin":
        rows = db.execute("SELECT * FROM assessments ORDER BY created_at DESC")
    else:
        rows = db.execute(
            "SELECT * FROM assessments WHERE uploaded_by = ? OR uploaded_by IS NULL ORDER BY created_at DESC",
            (user["user_id"],),
        )
    return [assessment_to_api(row_to_dict(row)) for row in rows]


def list_my_assessments(user: Dict[str, Any]) -> List[Dict[str, Any]]:
    rows = db.execute(
        "SELECT * FROM assessments WHERE uploaded_by = ? ORDER BY created_at DESC", (user["user_id"],)
    )
    name = f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()
    return [assessment_to_api(row_to_dict(row), uploader_name=name) for row in rows]


def _admin_row(kind: str, assessment_id: str) -> Dict[str, Any]:
    stored_type = ADMIN_KINDS.get(kind)
    if stored_type is None:
        raise ValidationFailed("Invalid assessment type")
    row = _get_row(assessment_id)
    if row is None or row["type"] != stored_type:
        raise ContentNotFoundError("Assessment not found")
    return row


def publish_assessment(user: Dict[str, Any], kind: str, assessment_id: str, status: str) -> Dict[str, Any]:
    if status not in PUBLISH_STATUSES:
        raise ValidationFailed(f"Status must be one of: {', '.join(PUBLISH_STATUSES)}")
    row = _admin_row(kind, assessment_id)
    if not _can_manage(user, row):
        raise PermissionDeniedError("You can only manage assessments you uploaded")

    db.execute_write("UPDATE assessments SET status = ? WHERE assessment_id = ?", (status, assessment_id))
    logger.info("Assessment %s set to %s by %s", assessment_id, status, user["user_id"])
    return assessment_to_api(_get_row(assessment_id))


def delete_assessment(user: Dict[str, Any], kind: str, assessment_id: str) -> None:
    row = _admin_row(kind, assessment_id)
    if not _can_manage(user, row):
        raise PermissionDeniedError("You can only delete assessments you uploaded")
    db.execute_write("DELETE FROM assessments WHERE assessment_id = ?", (assessment_id,))
    remove_assessment_file(row)
    logger.info("Assessment %s deleted by %s", assessment_id, user["user_id"])


def remove_assessment_file(row: Dict[str, Any]) -> None:
    if not row.get("file_path"):
        return
    path = Path(row["file_path"])
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove assessment file %s: %s", path, e)


# ----------------------------------------------------------------------
# Secure images
# ----------------------------------------------------------------------

def _secure_row(kind: str, assessment_id: str) -> Dict[str, Any]:
    if kind not in ContentConfig.SECURE_IMAGE_TYPES:
        raise ValidationFailed("Invalid assessment type")
    if not is_object_id(assessment_id):
        raise ValidationFailed("Invalid assessment ID format")
    row = _get_row(assessment_id)
    if row is None or row["type"] != kind:
        raise ContentNotFoundError("Assessment not found")
    return row


def secure_metadata(kind: str, assessment_id: str) -> Dict[str, Any]:
    """Metadata for the secure viewer, with defaults for missing marks and duration."""
    row = _secure_row(kind, assessment_id)
    course = repository.get_course_row(row["course_id"])
    unit = repository.get_unit(row["unit_id"])

    institution = None
    if course.get("institution_id"):
        try:
            institution = repository.get_institution(course["institution_id"])["name"]
        except ContentNotFoundError:
            institution = None

    filename = row.get("filename")
    return {
        "id": row["assessment_id"],
        "title": row["title"],
        "type": kind,
        "course": {"name": course["name"], "code": course.get("code"), "institution": institution},
        "unitName": unit["unitName"] or row.get("unit_name"),
        "unitYear": unit["year"],
        "unitSemester": unit["semester"],
        "description": row.get("description") or f"{kind.upper()} assessment for {unit['unitName']}",
        "totalMarks": row.get("total_marks") or ContentConfig.DEFAULT_TOTAL_MARKS.get(kind, 100),
        "duration": row.get("duration") or ContentConfig.DEFAULT_DURATION_MINUTES.get(kind, 180),
        "instructions": row.get("instructions") or DEFAULT_INSTRUCTIONS,
        "dueDate": row.get("due_date"),
        "uploadDate": row.get("created_at"),
        "hasFile": bool(filename),
        "fileType": Path(filename).suffix if filename else None,
        "status": row["status"],
        "isPremium": bool(row.get("is_premium")),
        "reviewNotes": row.get("review_notes"),
    }


def secure_file(user: Dict[str, Any], kind: str, assessment_id: str) -> Tuple[Path, str]:
    """
    Resolve the file behind a viewable assessment.

    Students need an active subscription for the unit's year when the
    assessment is premium; admins are not gated.

    Returns:
        (path on disk, content type)
    """
    row = _secure_row(kind, assessment_id)
    if row["status"] not in ContentConfig.SECURE_VIEWABLE_STATUSES:
        raise ContentNotFoundError("Assessment not available")

    if user["role"] not in ADMIN_ROLES and row.get("is_premium"):
        unit = repository.get_unit(row["unit_id"])
        if not has_active_subscription(user["user_id"], row["course_id"], unit["year"]):
            raise SubscriptionRequiredError("An active subscription is required to view this assessment")

    path = Path(row["file_path"]) if row.get("file_path") else None
    if path is None or not path.exists():
        logger.error("Assessment file missing for %s: %s", assessment_id, path)
        raise ContentNotFoundError("Assessment file not found")

    content_type = ContentConfig.SECURE_FILE_CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")
    return path, content_type


def log_access(
    user_id: str,
    assessment_id: str,
    assessment_type: str,
    action: str,
    timestamp: Optional[str] = None,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> None:
    db.execute_write(
        """
        INSERT INTO access_logs (user_id, assessment_id, assessment_type, action, timestamp, user_agent, ip_address)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, assessment_id, assessment_type, action, timestamp, user_agent, ip_address),
    )
    logger.info("Access log: user=%s assessment=%s/%s action=%s", user_id, assessment_type, assessment_id, action)


def access_logs(assessment_id: str) -> List[Dict[str, Any]]:
    rows = db.execute("SELECT * FROM access_logs WHERE assessment_id = ? ORDER BY log_id", (assessment_id,))
    return [row_to_dict(row) for row in rows]

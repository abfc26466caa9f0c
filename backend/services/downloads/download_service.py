"""
Student download records. A download lives as long as the subscription
that allowed it.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.config import MAX_STUDY_YEARS
from core.database import db, row_to_dict
from core.errors import ContentNotFoundError, SubscriptionRequiredError, ValidationFailed
from core.security import new_object_id
from services.catalog import repository
from services.payments.subscription_service import active_subscription

logger = logging.getLogger(__name__)

ORIGINS = ("course_note", "resource")


def download_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["download_id"],
        "userId": row["user_id"],
        "courseId": row["course_id"],
        "courseName": row.get("course_name"),
        "courseCode": row.get("course_code"),
        "subscriptionId": row.get("subscription_id"),
        "year": row["year"],
        "unitId": row.get("unit_id"),
        "unitName": row.get("unit_name"),
        "topicId": row.get("topic_id"),
        "topicTitle": row.get("topic_title"),
        "resourceId": row["resource_id"],
        "resourceTitle": row.get("resource_title"),
        "origin": row["origin"],
        "filename": row["filename"],
        "fileSize": row.get("file_size"),
        "downloadedAt": row["downloaded_at"],
        "expiresAt": row["expires_at"],
    }


def register_download(user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Record (or refresh) a download for the user.

    Raises:
        ValidationFailed: missing resource id, filename or a bad year
        SubscriptionRequiredError: no active subscription for the year
    """
    resource_id = (data.get("resourceId") or "").strip()
    filename = (data.get("filename") or "").strip()
    if not data.get("courseId"):
        raise ValidationFailed("courseId is required")
    if not resource_id:
        raise ValidationFailed("resourceId is required")
    if not filename:
        raise ValidationFailed("filename is required")
    try:
        year = int(data.get("year"))
    except (TypeError, ValueError):
        raise ValidationFailed(f"year must be between 1 and {MAX_STUDY_YEARS}")
    if not 1 <= year <= MAX_STUDY_YEARS:
        raise ValidationFailed(f"year must be between 1 and {MAX_STUDY_YEARS}")

    subscription = active_subscription(user_id, data["courseId"], year)
    if subscription is None or not subscription.get("end_date"):
        raise SubscriptionRequiredError("Active subscription required to download this resource")

    course = repository.get_course_row(data["courseId"])
    origin = data.get("origin") if data.get("origin") in ORIGINS else "course_note"
    now = datetime.now(timezone.utc).isoformat()

    db.execute_write(
        """
        INSERT INTO student_downloads
            (download_id, user_id, course_id, course_name, course_code, subscription_id, year,
             unit_id, unit_name, topic_id, topic_title, resource_id, resource_title, origin,
             filename, file_size, downloaded_at, expires_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id, resource_id, filename) DO UPDATE SET
            course_id = excluded.course_id,
            course_name = excluded.course_name,
            course_code = excluded.course_code,
            subscription_id = excluded.subscription_id,
            year = excluded.year,
            unit_id = excluded.unit_id,
            unit_name = excluded.unit_name,
            topic_id = excluded.topic_id,
            topic_title = excluded.topic_title,
            resource_title = excluded.resource_title,
            origin = excluded.origin,
            file_size = excluded.file_size,
            downloaded_at = excluded.downloaded_at,
            expires_at = excluded.expires_at
        """,
        (
            new_object_id(), user_id, course["course_id"], course["name"], course.get("code"),
            subscription["subscription_id"], year, data.get("unitId"), data.get("unitName"),
            data.get("topicId"), data.get("topicTitle"), resource_id, data.get("resourceTitle"),
            origin, filename, data.get("fileSize"), now, subscription["end_date"],
        ),
    )
    row = db.execute_one(
        "SELECT * FROM student_downloads WHERE user_id = ? AND resource_id = ? AND filename = ?",
        (user_id, resource_id, filename),
    )
    logger.info("Download of %s registered for %s (expires %s)", filename, user_id, subscription["end_date"])
    return download_to_api(row_to_dict(row))


def list_downloads(user_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Unexpired downloads, most recent first."""
    cutoff = (now or datetime.now(timezone.utc)).isoformat()
    rows = db.execute(
        "SELECT * FROM student_downloads WHERE user_id = ? AND expires_at > ? ORDER BY downloaded_at DESC",
        (user_id, cutoff),
    )
    return [download_to_api(row_to_dict(row)) for row in rows]


def delete_download(user_id: str, download_id: str) -> None:
    deleted = db.execute_write(
        "DELETE FROM student_downloads WHERE download_id = ? AND user_id = ?", (download_id, user_id)
    )
    if not deleted:
        raise ContentNotFoundError("Download record not found")
    logger.info("Download %s removed by %s", download_id, user_id)

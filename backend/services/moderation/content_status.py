"""
Admin content status: the moderation listing and per-item deletion.

Deletion runs every requested item in its own savepoint, so an item that
fails (missing, or owned by another admin) never undoes the items that
were removed before it.
"""
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.database import db, row_to_dict
from core.errors import ContentNotFoundError, PermissionDeniedError, ServiceError, ValidationFailed
from core.transaction import transaction_manager
from services.catalog.repository import ASSET_JSON_COLUMNS

logger = logging.getLogger(__name__)

MODERATION_STATUSES = ("pending", "approved", "rejected")

TOPIC_TYPES = ("video", "notes", "youtube_link")
ASSESSMENT_TYPES = ("cats", "assignments", "pastExams")


def normalize_status(status: Optional[str]) -> str:
    """Fold lifecycle statuses onto the three moderation buckets."""
    value = (status or "").lower()
    if value in MODERATION_STATUSES:
        return value
    if value == "published":
        return "approved"
    return "pending"


def _visible_to(user: Dict[str, Any], uploaded_by: Optional[str]) -> bool:
    # Legacy content without an uploader stays actionable for mini admins
    if user["role"] == "super_admin" or not uploaded_by:
        return True
    return uploaded_by == user["user_id"]


def _lookup_names() -> Tuple[Dict[str, str], Dict[str, str], Dict[str, str]]:
    courses = {r["course_id"]: r["name"] for r in db.execute("SELECT course_id, name FROM courses")}
    units = {r["unit_id"]: r["unit_name"] for r in db.execute("SELECT unit_id, unit_name FROM units")}
    topics = {r["topic_id"]: r["title"] for r in db.execute("SELECT topic_id, title FROM topics")}
    return courses, units, topics


def list_content_status(user: Dict[str, Any]) -> Dict[str, Any]:
    """Content uploaded by (or actionable for) the admin, with per-status counts."""
    courses, units, topics = _lookup_names()
    stats = {"pending": 0, "approved": 0, "rejected": 0, "total": 0}
    content: List[Dict[str, Any]] = []

    def register(entry: Dict[str, Any]) -> None:
        if not _visible_to(user, entry["uploadedBy"]):
            return
        entry["status"] = normalize_status(entry["status"])
        entry["courseName"] = courses.get(entry["courseId"])
        entry["unitName"] = entry.get("unitName") or units.get(entry["unitId"])
        stats[entry["status"]] += 1
        stats["total"] += 1
        content.append(entry)

    for raw in db.execute("SELECT * FROM content_assets"):
        row = row_to_dict(raw, ASSET_JSON_COLUMNS)
        register({
            "id": row["asset_id"],
            "type": row["type"],
            "title": row.get("title"),
            "status": row["status"],
            "courseId": row.get("course_id"),
            "unitId": row.get("unit_id"),
            "topicId": row.get("topic_id"),
            "topicTitle": topics.get(row.get("topic_id")),
            "uploadDate": row.get("upload_date"),
            "filename": row.get("filename"),
            "reviewNotes": row.get("review_notes"),
            "uploadedBy": row.get("uploaded_by"),
            "assessmentId": None,
            "isPremium": bool(row.get("is_premium")),
        })

    for raw in db.execute("SELECT * FROM assessments"):
        row = row_to_dict(raw)
        register({
            "id": row["assessment_id"],
            "type": row["type"],
            "title": row["title"],
            "status": row["status"],
            "courseId": row["course_id"],
            "unitId": row["unit_id"],
            "unitName": row.get("unit_name"),
            "topicId": None,
            "topicTitle": None,
            "uploadDate": row.get("created_at"),
            "filename": row.get("filename"),
            "reviewNotes": row.get("review_notes"),
            "uploadedBy": row.get("uploaded_by"),
            "assessmentId": row["assessment_id"],
            "isPremium": bool(row.get("is_premium")),
        })

    content.sort(key=lambda item: item.get("uploadDate") or "", reverse=True)
    return {"content": content, "stats": stats}


# ----------------------------------------------------------------------
# Deletion
# ----------------------------------------------------------------------

def _require_scope(conn: sqlite3.Connection, item: Dict[str, Any]) -> None:
    course_id, unit_id = item.get("courseId"), item.get("unitId")
    if not course_id or not unit_id or not item.get("contentType"):
        raise ValidationFailed("courseId, unitId, and contentType are required")
    if conn.execute("SELECT 1 FROM courses WHERE course_id = ?", (course_id,)).fetchone() is None:
        raise ContentNotFoundError("Course not found")
    unit = conn.execute(
        "SELECT 1 FROM units WHERE unit_id = ? AND course_id = ?", (unit_id, course_id)
    ).fetchone()
    if unit is None:
        raise ContentNotFoundError("Unit not found")


def _authorize(user: Dict[str, Any], uploaded_by: Optional[str]) -> None:
    if not _visible_to(user, uploaded_by):
        raise PermissionDeniedError("Not authorized to delete this content")


def _delete_topic_content(conn: sqlite3.Connection, user: Dict[str, Any], item: Dict[str, Any]) -> None:
    content_type = item["contentType"]
    if content_type not in TOPIC_TYPES:
        raise ContentNotFoundError("Content not found")
    topic = conn.execute(
        "SELECT 1 FROM topics WHERE topic_id = ? AND unit_id = ?", (item["topicId"], item["unitId"])
    ).fetchone()
    if topic is None:
        raise ContentNotFoundError("Topic not found")

    query = "SELECT asset_id, uploaded_by FROM content_assets WHERE topic_id = ? AND type = ?"
    params: Tuple[Any, ...] = (item["topicId"], content_type)
    if item.get("id"):
        rows = conn.execute(query + " AND asset_id = ?", params + (item["id"],)).fetchall()
    else:
        rows = conn.execute(query, params).fetchall()
        # Without an id the topic and type must name a single asset
        if len(rows) > 1:
            raise ValidationFailed("id is required when a topic holds several items of this type")
    if not rows:
        raise ContentNotFoundError("Content not found")

    asset = rows[0]
    _authorize(user, asset["uploaded_by"])
    conn.execute("DELETE FROM content_assets WHERE asset_id = ?", (asset["asset_id"],))


def _delete_assessment(conn: sqlite3.Connection, user: Dict[str, Any], item: Dict[str, Any]) -> Optional[str]:
    content_type = item["contentType"]
    if content_type not in ASSESSMENT_TYPES:
        raise ValidationFailed("Invalid assessment type")
    row = conn.execute(
        "SELECT assessment_id, uploaded_by, file_path FROM assessments "
        "WHERE assessment_id = ? AND unit_id = ? AND type = ?",
        (item["assessmentId"], item["unitId"], content_type),
    ).fetchone()
    if row is None:
        raise ContentNotFoundError("Assessment not found")
    _authorize(user, row["uploaded_by"])
    conn.execute("DELETE FROM assessments WHERE assessment_id = ?", (row["assessment_id"],))
    return row["file_path"]


def delete_content(user: Dict[str, Any], items: List[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
    """
    Delete moderation items, authorising each one separately.

    Returns:
        (status code, body): 200 when every item was deleted, 207 on
        partial success, 403 when every item was refused for permission and
        400 when nothing was deleted otherwise. The body lists a
        result per item, echoing the item as sent.
    """
    results: List[Dict[str, Any]] = []
    removed_files: List[str] = []
    denied = 0

    with transaction_manager.transaction() as conn:
        for index, item in enumerate(items):
            item = item if isinstance(item, dict) else {}
            try:
                with transaction_manager.savepoint(conn, f"delete_item_{index}"):
                    _require_scope(conn, item)
                    if item.get("topicId"):
                        _delete_topic_content(conn, user, item)
                    elif item.get("assessmentId"):
                        file_path = _delete_assessment(conn, user, item)
                        if file_path:
                            removed_files.append(file_path)
                    else:
                        raise ValidationFailed("topicId or assessmentId is required for deletion")
            except ServiceError as e:
                logger.info("Delete of %s refused: %s", item, e.message)
                if isinstance(e, PermissionDeniedError):
                    denied += 1
                results.append({"item": item, "success": False, "message": e.message})
            else:
                results.append({"item": item, "success": True, "message": "Deleted"})

    for file_path in removed_files:
        try:
            Path(file_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove file %s: %s", file_path, e)

    deleted = sum(1 for r in results if r["success"])
    failures = [{"item": r["item"], "message": r["message"]} for r in results if not r["success"]]
    logger.info("Admin %s deleted %d of %d content items", user["user_id"], deleted, len(results))

    if deleted == 0 and denied and denied == len(results):
        return 403, {"message": "Access denied", "deletedCount": 0, "results": results, "failures": failures}
    if deleted == 0:
        return 400, {"message": "No content was deleted", "deletedCount": 0, "results": results, "failures": failures}
    if failures:
        return 207, {
            "message": f"Deleted {deleted} of {len(results)} content items",
            "deletedCount": deleted,
            "results": results,
            "failures": failures,
        }
    return 200, {
        "message": "Content deleted successfully" if deleted == 1 else "Content items deleted successfully",
        "deletedCount": deleted,
        "results": results,
        "failures": [],
    }

"""
Approved course content for students, with server-side access flags.

This is the authoritative entitlement check: `hasAccess`, `filename`
and the access rules are derived here from the student's active
subscriptions, and clients only render what it reports.
"""
import logging
import mimetypes
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.config import (
    ADMIN_ROLES,
    ASSESSMENT_UPLOADS_DIR,
    SUBSCRIPTION_CURRENCY,
    SUBSCRIPTION_PRICE,
    UPLOADS_DIR,
    ContentConfig,
)
from core.database import db, row_to_dict
from core.errors import ContentNotFoundError, SubscriptionRequiredError, ValidationFailed
from services.catalog import repository
from services.payments.subscription_service import has_active_subscription, subscriptions_by_year

logger = logging.getLogger(__name__)


def subscription_info() -> Dict[str, Any]:
    return {
        "price": SUBSCRIPTION_PRICE,
        "currency": SUBSCRIPTION_CURRENCY,
        "duration": "1 month",
        "perYear": True,
        "perCourse": True,
    }


def _unit_payload(unit: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": unit["id"],
        "unitCode": unit.get("unitCode"),
        "unitName": unit.get("unitName"),
        "year": unit.get("year"),
        "semester": unit.get("semester"),
        "subcourse": unit.get("subcourse"),
    }


def _topic_payload(topic: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": topic["id"], "title": topic["title"], "number": topic.get("number")}


def _topic_resource(
    asset: Dict[str, Any],
    unit: Dict[str, Any],
    topic: Dict[str, Any],
    has_subscription: bool,
) -> Optional[Dict[str, Any]]:
    content_type = asset["type"]
    is_premium = asset["isPremium"]
    stored_rules = asset.get("accessRules") or {}
    base = {
        "courseId": asset.get("courseId"),
        "unitId": unit["id"],
        "topicId": topic["id"],
        "description": asset.get("description") or topic.get("description"),
        "fileSize": asset.get("fileSize"),
        "isPremium": is_premium,
        "requiresSubscription": is_premium and not has_subscription,
        "uploadDate": asset.get("uploadDate"),
        "status": asset.get("status"),
        "unit": _unit_payload(unit),
        "topic": _topic_payload(topic),
    }

    if content_type == "video":
        can_access = not is_premium or has_subscription
        return {
            **base,
            "id": f"{unit['id']}-{topic['id']}-video",
            "type": "video",
            "title": asset.get("title") or topic["title"],
            "filename": asset.get("filename") if can_access else None,
            "duration": asset.get("duration"),
            "hasAccess": can_access,
            "accessRules": {
                **stored_rules,
                "canStream": can_access,
                "canDownload": False,
                "preventScreenshot": True,
                "preventRecording": True,
            },
        }

    if content_type == "notes":
        return {
            **base,
            "id": f"{unit['id']}-{topic['id']}-notes",
            "type": "notes",
            "title": asset.get("title") or f"{topic['title']} - Notes",
            "filename": asset.get("filename"),
            "hasAccess": True,
            "accessRules": {
                **stored_rules,
                "canView": True,
                "canDownload": not is_premium or has_subscription,
                "downloadRequiresSubscription": is_premium,
            },
        }

    if content_type == "youtube_link":
        can_access = not is_premium or has_subscription
        return {
            **base,
            "id": f"{unit['id']}-{topic['id']}-youtube-{asset['id']}",
            "type": "youtube",
            "title": asset.get("title"),
            "url": asset.get("url") if can_access else None,
            "hasAccess": can_access,
            "accessRules": stored_rules,
        }

    logger.debug("Skipping asset %s of unknown type %s", asset["id"], content_type)
    return None


def _assessment_resource(row: Dict[str, Any], unit: Dict[str, Any], has_subscription: bool) -> Dict[str, Any]:
    content_type = row["type"]
    is_premium = bool(row.get("is_premium"))

    if content_type in ContentConfig.FREE_CONTENT_TYPES:
        rules = {"canView": True, "canDownload": True, "isFree": True, "preventScreenshot": False}
        has_access = True
    else:
        can_access = not is_premium or has_subscription
        rules = {
            "canView": can_access,
            "canDownload": False,
            "viewOnlyOnSite": True,
            "preventScreenshot": True,
            "preventRecording": True,
            "requiresSubscription": is_premium and not has_subscription,
        }
        has_access = can_access

    return {
        "id": f"{unit['id']}-{row['assessment_id']}-{content_type}",
        "_id": row["assessment_id"],
        "assessmentId": row["assessment_id"],
        "courseId": row["course_id"],
        "unitId": unit["id"],
        "type": content_type,
        "title": row["title"],
        "description": row.get("description"),
        "filename": row.get("filename") if has_access else None,
        "isPremium": is_premium,
        "hasAccess": has_access,
        "requiresSubscription": rules.get("requiresSubscription", False),
        "uploadDate": row.get("created_at"),
        "dueDate": row.get("due_date"),
        "totalMarks": row.get("total_marks"),
        "duration": row.get("duration"),
        "academicYear": row.get("academic_year"),
        "period": row.get("period"),
        "status": row["status"],
        "accessRules": rules,
        "unit": _unit_payload(unit),
    }


def approved_course_content(
    course_id: str,
    has_subscription: Callable[[int], bool],
    year: Optional[int] = None,
    semester: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Student-visible resources of a course, newest first."""
    units = repository.list_units(course_id)
    if year:
        units = [u for u in units if u["year"] == int(year)]
    if semester:
        units = [u for u in units if u["semester"] == int(semester)]
    unit_map = {u["id"]: u for u in units}
    if not unit_map:
        return []

    visible = ContentConfig.STUDENT_VISIBLE_STATUSES
    topics = {t["id"]: t for t in repository.list_topics(list(unit_map))}
    assets = repository.list_content_assets(unit_ids=list(unit_map), statuses=visible)

    content: List[Dict[str, Any]] = []
    for asset in assets:
        unit = unit_map.get(asset.get("unitId"))
        topic = topics.get(asset.get("topicId"))
        if unit is None or topic is None:
            continue
        resource = _topic_resource(asset, unit, topic, has_subscription(unit["year"]))
        if resource is not None:
            content.append(resource)

    placeholders = ",".join("?" for _ in unit_map)
    status_placeholders = ",".join("?" for _ in visible)
    rows = db.execute(
        f"SELECT * FROM assessments WHERE unit_id IN ({placeholders}) AND status IN ({status_placeholders})",
        tuple(unit_map) + tuple(visible),
    )
    for raw in rows:
        row = row_to_dict(raw)
        if not row.get("filename"):
            continue
        unit = unit_map[row["unit_id"]]
        content.append(_assessment_resource(row, unit, has_subscription(unit["year"])))

    content.sort(key=lambda item: item.get("uploadDate") or "", reverse=True)
    return content


def student_course_content(
    user_id: str,
    course_id: str,
    year: Optional[int] = None,
    semester: Optional[int] = None,
) -> Dict[str, Any]:
    """The GET /api/student/course/:id/content payload."""
    course = repository.get_course_row(course_id)
    subscriptions = subscriptions_by_year(user_id, course_id, year)

    def has_subscription(unit_year: int) -> bool:
        if unit_year not in subscriptions:
            subscriptions[unit_year] = has_active_subscription(user_id, course_id, unit_year)
        return subscriptions[unit_year]

    content = approved_course_content(course_id, has_subscription, year=year, semester=semester)

    institution = None
    if course.get("institution_id"):
        institution = repository.get_institution(course["institution_id"])

    logger.info("Serving %d content items of course %s to %s", len(content), course_id, user_id)
    return {
        "course": {
            "id": course["course_id"],
            "name": course["name"],
            "code": course.get("code"),
            "department": course.get("department"),
            "institution": {"name": institution["name"], "shortName": institution["shortName"]} if institution else None,
        },
        "content": content,
        "totalContent": len(content),
        "premiumContent": sum(1 for c in content if c["isPremium"]),
        "freeContent": sum(1 for c in content if not c["isPremium"]),
        "subscriptions": subscriptions,
        "subscriptionInfo": subscription_info(),
    }


def resolve_upload(user: Dict[str, Any], filename: str) -> Tuple[Path, str]:
    """
    Locate an uploaded file for embedding and check the caller may see it.

    Notes stay viewable without a subscription (only downloading them is
    gated); premium videos and assessments need one for the unit year.

    Raises:
        ValidationFailed: the name is not a plain file name
        SubscriptionRequiredError: premium content without a subscription
        ContentNotFoundError: nothing stored under that name
    """
    if not filename or Path(filename).name != filename or filename.startswith("."):
        raise ValidationFailed("Invalid filename")

    path = next((d / filename for d in (UPLOADS_DIR, ASSESSMENT_UPLOADS_DIR) if (d / filename).is_file()), None)
    if path is None:
        raise ContentNotFoundError("File not found")

    if user["role"] not in ADMIN_ROLES:
        gate = _premium_gate(filename)
        if gate is not None and not has_active_subscription(user["user_id"], gate[0], gate[1]):
            raise SubscriptionRequiredError("An active subscription is required to open this file")

    content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return path, content_type


def _premium_gate(filename: str) -> Optional[Tuple[str, int]]:
    """(course, year) a premium file is locked to, or None when it is open."""
    row = db.execute_one(
        """
        SELECT c.course_id, u.year FROM content_assets c JOIN units u ON u.unit_id = c.unit_id
        WHERE c.filename = ? AND c.is_premium = 1 AND c.type != 'notes'
        """,
        (filename,),
    )
    if row is None:
        row = db.execute_one(
            """
            SELECT a.course_id, u.year FROM assessments a JOIN units u ON u.unit_id = a.unit_id
            WHERE a.filename = ? AND a.is_premium = 1
            """,
            (filename,),
        )
    return (row["course_id"], row["year"]) if row else None

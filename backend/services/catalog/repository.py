"""
Catalog persistence: institutions, courses, units, topics and content assets.

Rows are stored snake_case and exposed in the camelCase shapes the
frontends consume.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from core.database import db, row_to_dict
from core.errors import ContentNotFoundError
from core.security import new_object_id
from services.catalog.academic_calendar import normalize_units, periods_for_year

logger = logging.getLogger(__name__)

COURSE_JSON_COLUMNS = ("subcourses", "academic_years")
ASSET_JSON_COLUMNS = ("access_rules",)


# ----------------------------------------------------------------------
# Row -> API shape
# ----------------------------------------------------------------------

def institution_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["institution_id"],
        "name": row["name"],
        "shortName": row.get("short_name"),
        "type": row.get("type"),
        "location": row.get("location"),
        "establishedYear": row.get("established_year"),
        "studentCount": row.get("student_count") or 0,
        "isActive": bool(row.get("is_active")),
    }


def unit_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["unit_id"],
        "courseId": row["course_id"],
        "unitCode": row.get("unit_code"),
        "unitName": row["unit_name"],
        "year": row.get("year") or 1,
        "semester": row.get("semester") or 1,
        "subcourse": row.get("subcourse"),
        "creditHours": row.get("credit_hours"),
    }


def topic_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["topic_id"],
        "unitId": row["unit_id"],
        "number": row.get("number"),
        "title": row["title"],
        "description": row.get("description"),
    }


def course_to_api(row: Dict[str, Any], units: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    schedule = row.get("schedule_type") or "semester"
    duration = {"years": row.get("duration_years"), "scheduleType": schedule}
    duration["terms" if schedule == "term" else "semesters"] = row.get("duration_periods")
    data = {
        "id": row["course_id"],
        "name": row["name"],
        "code": row.get("code"),
        "department": row.get("department"),
        "institution": row.get("institution_id"),
        "duration": duration,
        "subcourses": row.get("subcourses") or [],
        "academicYears": row.get("academic_years") or [],
        "isActive": bool(row.get("is_active")),
    }
    if units is not None:
        data["units"] = units
    return data


def asset_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["asset_id"],
        "type": row["type"],
        "courseId": row.get("course_id"),
        "unitId": row.get("unit_id"),
        "topicId": row.get("topic_id"),
        "title": row.get("title"),
        "description": row.get("description"),
        "filename": row.get("filename"),
        "url": row.get("url"),
        "fileSize": row.get("file_size"),
        "duration": row.get("duration"),
        "status": row.get("status"),
        "isPremium": bool(row.get("is_premium")),
        "accessRules": row.get("access_rules") or {},
        "uploadedBy": row.get("uploaded_by"),
        "uploadDate": row.get("upload_date"),
    }


# ----------------------------------------------------------------------
# Institutions
# ----------------------------------------------------------------------

def create_institution(
    name: str,
    short_name: Optional[str] = None,
    type: Optional[str] = None,
    location: Optional[str] = None,
    established_year: Optional[int] = None,
    student_count: int = 0,
    is_active: bool = True,
) -> Dict[str, Any]:
    institution_id = new_object_id()
    db.execute_write(
        """
        INSERT INTO institutions
            (institution_id, name, short_name, type, location, established_year, student_count, is_active)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (institution_id, name, short_name, type, location, established_year, student_count, int(is_active)),
    )
    return get_institution(institution_id)


def list_institutions(active_only: bool = True) -> List[Dict[str, Any]]:
    query = "SELECT * FROM institutions"
    if active_only:
        query += " WHERE is_active = 1"
    query += " ORDER BY name"
    return [institution_to_api(row_to_dict(row)) for row in db.execute(query)]


def get_institution(institution_id: str) -> Dict[str, Any]:
    row = db.execute_one("SELECT * FROM institutions WHERE institution_id = ?", (institution_id,))
    if row is None:
        raise ContentNotFoundError("Institution not found")
    return institution_to_api(row_to_dict(row))


# ----------------------------------------------------------------------
# Courses and units
# ----------------------------------------------------------------------

def create_course(
    institution_id: Optional[str],
    name: str,
    code: Optional[str] = None,
    department: Optional[str] = None,
    duration_years: int = 4,
    duration_periods: int = 2,
    schedule_type: str = "semester",
    subcourses: Optional[List[str]] = None,
    academic_years: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    course_id = new_object_id()
    db.execute_write(
        """
        INSERT INTO courses
            (course_id, institution_id, name, code, department, duration_years,
             duration_periods, schedule_type, subcourses, academic_years)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            course_id, institution_id, name, code, department, duration_years,
            duration_periods, schedule_type, json.dumps(subcourses or []), json.dumps(academic_years or []),
        ),
    )
    return get_course(course_id)


def get_course_row(course_id: str) -> Dict[str, Any]:
    row = db.execute_one("SELECT * FROM courses WHERE course_id = ?", (course_id,))
    if row is None:
        raise ContentNotFoundError("Course not found")
    return row_to_dict(row, COURSE_JSON_COLUMNS)


def list_courses(institution_id: Optional[str] = None) -> List[Dict[str, Any]]:
    if institution_id:
        rows = db.execute(
            "SELECT * FROM courses WHERE is_active = 1 AND institution_id = ? ORDER BY name", (institution_id,)
        )
    else:
        rows = db.execute("SELECT * FROM courses WHERE is_active = 1 ORDER BY name")
    return [course_to_api(row_to_dict(row, COURSE_JSON_COLUMNS)) for row in rows]


def get_course(course_id: str) -> Dict[str, Any]:
    """Course with its units sorted on the academic calendar."""
    row = get_course_row(course_id)
    units = normalize_units(list_units(course_id))
    course = course_to_api(row, units=units)
    course["periodsByYear"] = {
        year: periods_for_year(year, units, range(1, (row.get("duration_periods") or 1) + 1))
        for year in range(1, (row.get("duration_years") or 1) + 1)
    }
    return course


def create_unit(
    course_id: str,
    unit_code: str,
    unit_name: str,
    year: int = 1,
    semester: int = 1,
    subcourse: Optional[str] = None,
    credit_hours: int = 3,
) -> Dict[str, Any]:
    get_course_row(course_id)
    unit_id = new_object_id()
    db.execute_write(
        """
        INSERT INTO units (unit_id, course_id, unit_code, unit_name, year, semester, subcourse, credit_hours)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (unit_id, course_id, unit_code, unit_name, year, semester, subcourse, credit_hours),
    )
    return get_unit(unit_id)


def get_unit(unit_id: str) -> Dict[str, Any]:
    row = db.execute_one("SELECT * FROM units WHERE unit_id = ?", (unit_id,))
    if row is None:
        raise ContentNotFoundError("Unit not found")
    return unit_to_api(row_to_dict(row))


def list_units(course_id: str) -> List[Dict[str, Any]]:
    rows = db.execute("SELECT * FROM units WHERE course_id = ?", (course_id,))
    return [unit_to_api(row_to_dict(row)) for row in rows]


# ----------------------------------------------------------------------
# Topics and content assets
# ----------------------------------------------------------------------

def create_topic(unit_id: str, title: str, number: int = 1, description: Optional[str] = None) -> Dict[str, Any]:
    get_unit(unit_id)
    topic_id = new_object_id()
    db.execute_write(
        "INSERT INTO topics (topic_id, unit_id, number, title, description) VALUES (?, ?, ?, ?, ?)",
        (topic_id, unit_id, number, title, description),
    )
    return get_topic(topic_id)


def get_topic(topic_id: str) -> Dict[str, Any]:
    row = db.execute_one("SELECT * FROM topics WHERE topic_id = ?", (topic_id,))
    if row is None:
        raise ContentNotFoundError("Topic not found")
    return topic_to_api(row_to_dict(row))


def list_topics(unit_ids: List[str]) -> List[Dict[str, Any]]:
    if not unit_ids:
        return []
    placeholders = ",".join("?" for _ in unit_ids)
    rows = db.execute(
        f"SELECT * FROM topics WHERE unit_id IN ({placeholders}) ORDER BY number", tuple(unit_ids)
    )
    return [topic_to_api(row_to_dict(row)) for row in rows]


def create_content_asset(
    type: str,
    course_id: str,
    unit_id: str,
    topic_id: Optional[str],
    title: str,
    filename: Optional[str] = None,
    url: Optional[str] = None,
    status: str = "pending",
    is_premium: bool = False,
    access_rules: Optional[Dict[str, Any]] = None,
    uploaded_by: Optional[str] = None,
    description: Optional[str] = None,
    file_size: Optional[int] = None,
    duration: Optional[int] = None,
) -> Dict[str, Any]:
    asset_id = new_object_id()
    db.execute_write(
        """
        INSERT INTO content_assets
            (asset_id, type, course_id, unit_id, topic_id, title, description, filename, url,
             file_size, duration, status, is_premium, access_rules, uploaded_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            asset_id, type, course_id, unit_id, topic_id, title, description, filename, url,
            file_size, duration, status, int(is_premium), json.dumps(access_rules or {}), uploaded_by,
        ),
    )
    return get_content_asset(asset_id)


def get_content_asset(asset_id: str) -> Dict[str, Any]:
    row = db.execute_one("SELECT * FROM content_assets WHERE asset_id = ?", (asset_id,))
    if row is None:
        raise ContentNotFoundError("Content not found")
    return asset_to_api(row_to_dict(row, ASSET_JSON_COLUMNS))


def list_content_assets(
    course_id: Optional[str] = None,
    unit_ids: Optional[List[str]] = None,
    type: Optional[str] = None,
    statuses: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    clauses, params = [], []
    if course_id:
        clauses.append("course_id = ?")
        params.append(course_id)
    if unit_ids is not None:
        if not unit_ids:
            return []
        clauses.append(f"unit_id IN ({','.join('?' for _ in unit_ids)})")
        params.extend(unit_ids)
    if type:
        clauses.append("type = ?")
        params.append(type)
    if statuses:
        clauses.append(f"status IN ({','.join('?' for _ in statuses)})")
        params.extend(statuses)

    query = "SELECT * FROM content_assets"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY upload_date DESC"
    return [asset_to_api(row_to_dict(row, ASSET_JSON_COLUMNS)) for row in db.execute(query, tuple(params))]

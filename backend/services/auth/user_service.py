"""
User accounts: registration, login and lookup.
"""
import logging
import re
import sqlite3
from typing import Any, Dict, Optional

from core.config import MAX_STUDY_YEARS, USER_ROLES
from core.database import db, row_to_dict
from core.errors import AuthenticationError, ValidationFailed
from core.security import create_access_token, hash_password, new_object_id, verify_password

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def user_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["user_id"],
        "email": row["email"],
        "firstName": row["first_name"],
        "lastName": row["last_name"],
        "phoneNumber": row.get("phone_number"),
        "role": row["role"],
        "institution": row.get("institution_id"),
        "course": row.get("course_id"),
        "yearOfStudy": row.get("year_of_study"),
    }


def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    """Raw user row, or None."""
    return row_to_dict(db.execute_one("SELECT * FROM users WHERE user_id = ?", (user_id,)))


def create_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str = "student",
    phone_number: Optional[str] = None,
    institution_id: Optional[str] = None,
    course_id: Optional[str] = None,
    year_of_study: Optional[int] = None,
) -> Dict[str, Any]:
    email = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationFailed("A valid email is required")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len((first_name or "").strip()) < 2 or len((last_name or "").strip()) < 2:
        raise ValidationFailed("First and last name must be at least 2 characters")
    if role not in USER_ROLES:
        raise ValidationFailed("Invalid role")
    if year_of_study is not None and not 1 <= int(year_of_study) <= MAX_STUDY_YEARS:
        raise ValidationFailed(f"Year of study must be between 1 and {MAX_STUDY_YEARS}")

    user_id = new_object_id()
    try:
        db.execute_write(
            """
            INSERT INTO users
                (user_id, email, password_hash, first_name, last_name, phone_number, role,
                 institution_id, course_id, year_of_study)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id, email, hash_password(password), first_name.strip(), last_name.strip(),
                phone_number, role, institution_id, course_id, year_of_study,
            ),
        )
    except sqlite3.IntegrityError:
        raise ValidationFailed("User already exists")

    logger.info("Registered %s user %s", role, user_id)
    return get_user(user_id)


def register(data: Dict[str, Any]) -> Dict[str, Any]:
    """Self-service student registration; returns {token, user}."""
    user = create_user(
        email=data.get("email"),
        password=data.get("password"),
        first_name=data.get("firstName"),
        last_name=data.get("lastName"),
        phone_number=data.get("phoneNumber"),
        institution_id=data.get("institution"),
        course_id=data.get("course"),
        year_of_study=data.get("yearOfStudy"),
    )
    return {
        "message": "User registered successfully",
        "token": create_access_token(user["user_id"], user["role"]),
        "user": user_to_api(user),
    }


def login(email: str, password: str) -> Dict[str, Any]:
    row = row_to_dict(db.execute_one("SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),)))
    if row is None or not verify_password(password or "", row["password_hash"]):
        logger.info("Failed login for %s", email)
        raise AuthenticationError("Invalid credentials")
    return {
        "message": "Login successful",
        "token": create_access_token(row["user_id"], row["role"]),
        "user": user_to_api(row),
    }

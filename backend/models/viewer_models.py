"""
Data models for the secure assessment viewer.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ViewerState(Enum):
    IDLE = "idle"
    METADATA_LOADED = "metadata_loaded"
    VIEWING = "viewing"
    ENDED = "ended"


@dataclass
class AssessmentMetadata:
    """Metadata returned by the secure-images metadata endpoint."""
    id: str
    title: str
    type: str
    duration_minutes: int
    total_marks: Optional[int] = None
    description: str = ""
    instructions: str = ""
    unit_name: Optional[str] = None
    unit_year: Optional[int] = None
    unit_semester: Optional[int] = None
    course: Dict[str, Any] = field(default_factory=dict)
    due_date: Optional[str] = None
    has_file: bool = False
    file_type: Optional[str] = None
    status: Optional[str] = None
    is_premium: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentMetadata":
        return cls(
            id=str(data.get("id") or ""),
            title=data.get("title", ""),
            type=data.get("type", ""),
            duration_minutes=int(data.get("duration") or 0),
            total_marks=data.get("totalMarks"),
            description=data.get("description") or "",
            instructions=data.get("instructions") or "",
            unit_name=data.get("unitName"),
            unit_year=data.get("unitYear"),
            unit_semester=data.get("unitSemester"),
            course=data.get("course") or {},
            due_date=data.get("dueDate"),
            has_file=bool(data.get("hasFile")),
            file_type=data.get("fileType"),
            status=data.get("status"),
            is_premium=bool(data.get("isPremium")),
        )


@dataclass
class SecurityWarning:
    message: str
    terminal: bool = False


@dataclass
class ContentHandle:
    """
    Local handle to fetched protected content (the object-URL analogue).

    Revoking drops the bytes; a revoked handle cannot be read again.
    """
    content_type: str
    _data: Optional[bytes] = field(default=None, repr=False)

    @property
    def revoked(self) -> bool:
        return self._data is None

    def read(self) -> bytes:
        if self._data is None:
            raise ValueError("Content handle has been revoked")
        return self._data

    def revoke(self) -> None:
        self._data = None

"""
Data models for catalog content as consumed by the client.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _as_int(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@dataclass
class AccessRules:
    """Per-resource viewing and download rules."""
    can_download: bool = False
    prevent_screenshot: bool = False
    view_only_on_site: bool = False
    download_requires_subscription: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AccessRules":
        data = data or {}
        return cls(
            can_download=bool(data.get("canDownload", False)),
            prevent_screenshot=bool(data.get("preventScreenshot", False)),
            view_only_on_site=bool(data.get("viewOnlyOnSite", False)),
            download_requires_subscription=bool(data.get("downloadRequiresSubscription", False)),
        )

    def to_dict(self) -> Dict[str, bool]:
        return {
            "canDownload": self.can_download,
            "preventScreenshot": self.prevent_screenshot,
            "viewOnlyOnSite": self.view_only_on_site,
            "downloadRequiresSubscription": self.download_requires_subscription,
        }

    @property
    def requires_secure_view(self) -> bool:
        return self.prevent_screenshot or self.view_only_on_site


@dataclass
class UnitRef:
    """The unit a resource belongs to, as embedded in content payloads."""
    id: Optional[str] = None
    unit_code: Optional[str] = None
    unit_name: Optional[str] = None
    year: Optional[int] = None
    semester: Optional[int] = None
    subcourse: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["UnitRef"]:
        if not data:
            return None
        return cls(
            id=data.get("id") or data.get("_id"),
            unit_code=data.get("unitCode"),
            unit_name=data.get("unitName") or data.get("name"),
            year=_as_int(data.get("year")),
            semester=_as_int(data.get("semester")),
            subcourse=data.get("subcourse"),
        )


@dataclass
class TopicRef:
    id: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TopicRef"]:
        if not data:
            return None
        return cls(id=data.get("id") or data.get("_id"), title=data.get("title"))


@dataclass
class Resource:
    """
    A learning resource (video, notes, YouTube link, CAT, assignment, past exam).

    `has_access` is the server-reported eligibility; the client combines it
    with its own subscription map before offering the resource.
    """
    id: str
    type: str
    title: str = ""
    description: str = ""
    status: str = "approved"
    has_access: bool = False
    is_premium: bool = False
    requires_subscription: bool = False
    unit: Optional[UnitRef] = None
    topic: Optional[TopicRef] = None
    unit_id: Optional[str] = None
    unit_year: Optional[int] = None
    unit_semester: Optional[int] = None
    year: Optional[int] = None
    semester: Optional[int] = None
    unit_code: Optional[str] = None
    unit_name: Optional[str] = None
    academic_year: Optional[str] = None
    period: Optional[str] = None
    assessment_id: Optional[str] = None
    filename: Optional[str] = None
    file_size: Optional[int] = None
    url: Optional[str] = None
    duration: Optional[int] = None
    total_marks: Optional[int] = None
    due_date: Optional[str] = None
    access_rules: AccessRules = field(default_factory=AccessRules)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            type=data.get("type", ""),
            title=data.get("title", ""),
            description=data.get("description", "") or "",
            status=data.get("status", "approved"),
            has_access=bool(data.get("hasAccess", False)),
            is_premium=bool(data.get("isPremium", False)),
            requires_subscription=bool(data.get("requiresSubscription", False)),
            unit=UnitRef.from_dict(data.get("unit")),
            topic=TopicRef.from_dict(data.get("topic")),
            unit_id=data.get("unitId"),
            unit_year=_as_int(data.get("unitYear")),
            unit_semester=_as_int(data.get("unitSemester")),
            year=_as_int(data.get("year")),
            semester=_as_int(data.get("semester")),
            unit_code=data.get("unitCode"),
            unit_name=data.get("unitName"),
            academic_year=data.get("academicYear"),
            period=data.get("period"),
            assessment_id=data.get("assessmentId"),
            filename=data.get("filename"),
            file_size=data.get("fileSize"),
            url=data.get("url"),
            duration=data.get("duration"),
            total_marks=data.get("totalMarks"),
            due_date=data.get("dueDate"),
            access_rules=AccessRules.from_dict(data.get("accessRules")),
            raw=data,
        )

    @property
    def effective_year(self) -> Optional[int]:
        """unit.year, then unitYear, then year."""
        if self.unit and self.unit.year:
            return self.unit.year
        return self.unit_year or self.year

    @property
    def effective_semester(self) -> Optional[int]:
        if self.unit and self.unit.semester:
            return self.unit.semester
        return self.unit_semester or self.semester

    @property
    def effective_unit_code(self) -> Optional[str]:
        return (self.unit.unit_code if self.unit else None) or self.unit_code

    @property
    def effective_unit_name(self) -> Optional[str]:
        return (self.unit.unit_name if self.unit else None) or self.unit_name

    @property
    def is_assessment(self) -> bool:
        return self.type in ("cats", "assignments", "pastExams")


@dataclass
class CourseContent:
    """The student content payload for one course."""
    course: Dict[str, Any]
    resources: List[Resource]
    subscriptions: Dict[int, bool]
    subscription_info: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CourseContent":
        subscriptions = {}
        for year, active in (data.get("subscriptions") or {}).items():
            key = _as_int(year)
            if key is not None:
                subscriptions[key] = bool(active)
        return cls(
            course=data.get("course") or {},
            resources=[Resource.from_dict(item) for item in data.get("content") or []],
            subscriptions=subscriptions,
            subscription_info=data.get("subscriptionInfo") or {},
        )

"""
Data models for subscriptions and the client payment flow.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentFlowState(Enum):
    """States of the client payment flow."""
    IDLE = "idle"              # initial screen, retry allowed
    INITIATING = "initiating"  # initiate request in flight
    POLLING = "polling"        # STK push sent, waiting for the callback
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


@dataclass
class SubscriptionScope:
    """What a subscription grants: (course, year) narrowed by semester/unit."""
    course_id: str
    year: int
    semester: Optional[int] = None
    unit_code: Optional[str] = None
    unit_name: Optional[str] = None

    def covers(self, course_id: str, year: int, semester: Optional[int] = None) -> bool:
        if self.course_id != course_id or self.year != year:
            return False
        if self.semester is not None and semester is not None and self.semester != semester:
            return False
        return True


@dataclass
class Subscription:
    id: str
    course_id: str
    year: int
    status: SubscriptionStatus
    semester: Optional[int] = None
    unit_code: Optional[str] = None
    phone_number: Optional[str] = None
    end_date: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subscription":
        try:
            status = SubscriptionStatus(data.get("status", "pending"))
        except ValueError:
            status = SubscriptionStatus.PENDING
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            course_id=str(data.get("courseId") or ""),
            year=int(data.get("year") or 1),
            status=status,
            semester=data.get("semester"),
            unit_code=data.get("unitCode"),
            phone_number=data.get("phoneNumber"),
            end_date=data.get("endDate"),
            raw=data,
        )

    @property
    def scope(self) -> SubscriptionScope:
        return SubscriptionScope(
            course_id=self.course_id,
            year=self.year,
            semester=self.semester,
            unit_code=self.unit_code,
        )

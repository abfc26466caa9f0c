"""
Data models for admin content moderation.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STATUS_KEYS = ("pending", "approved", "rejected")


@dataclass
class ContentStats:
    """Per-status counters shown above the moderation table."""
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total: int = 0
    # statuses outside the three headline buckets (e.g. published)
    other: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_items(cls, items: List[Dict[str, Any]]) -> "ContentStats":
        stats = cls()
        for item in items:
            stats.increment(item.get("status") or "pending")
        return stats

    def get(self, status: str) -> int:
        if status in STATUS_KEYS:
            return getattr(self, status)
        return self.other.get(status, 0)

    def increment(self, status: str) -> None:
        status = status.lower()
        if status in STATUS_KEYS:
            setattr(self, status, getattr(self, status) + 1)
        else:
            self.other[status] = self.other.get(status, 0) + 1
        self.total += 1

    def decrement(self, status: str) -> None:
        """Remove one item of the given prior status; never goes below zero."""
        status = (status or "pending").lower()
        if status in STATUS_KEYS:
            setattr(self, status, max(getattr(self, status) - 1, 0))
        else:
            self.other[status] = max(self.other.get(status, 0) - 1, 0)
        self.total = max(self.total - 1, 0)

    def as_dict(self) -> Dict[str, int]:
        data = {"pending": self.pending, "approved": self.approved, "rejected": self.rejected}
        data.update(self.other)
        data["total"] = self.total
        return data


@dataclass
class DeleteOutcome:
    """Result of a single or bulk delete as applied to local state."""
    status_code: int
    removed_keys: List[str] = field(default_factory=list)
    failed_keys: List[str] = field(default_factory=list)
    unconfirmed_keys: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def partial(self) -> bool:
        return bool(self.failed_keys or self.unconfirmed_keys)

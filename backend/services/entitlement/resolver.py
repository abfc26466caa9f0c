"""
Client-side entitlement resolution for course content.

Decides which affordance (view, download, secure view or subscribe) to
offer for a resource. The decision is advisory: the backend re-checks
entitlement on every content and binary endpoint.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from core.security import extract_object_id
from models.catalog_models import Resource
from models.subscription_models import Subscription, SubscriptionScope

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Raised for client-side validation failures before any request is made."""
    pass


class Affordance:
    VIEW = "view"
    DOWNLOAD = "download"
    SECURE_VIEW = "secure_view"
    SUBSCRIBE = "subscribe"


@dataclass
class AccessDecision:
    """What the UI should offer for a resource."""
    action: str
    year: Optional[int] = None
    scope: Dict[str, Any] = field(default_factory=dict)
    reason: str = ""


@dataclass
class SecureImageTarget:
    kind: str
    assessment_id: str
    title: str = ""


class EntitlementResolver:
    """
    Resolves access for resources of one course.

    Args:
        subscriptions: {year: bool} map from the content-fetch response
        selected_year: the currently selected year tab, used when a
            resource carries no year of its own
    """

    def __init__(self, subscriptions: Optional[Mapping[Any, Any]] = None, selected_year: Optional[int] = None):
        self.subscriptions: Dict[int, bool] = {}
        self.selected_year = selected_year
        self.replace_subscriptions(subscriptions or {})

    def replace_subscriptions(self, subscriptions: Mapping[Any, Any]) -> None:
        """Replace the cached map (after a full refetch)."""
        cleaned = {}
        for year, active in subscriptions.items():
            try:
                cleaned[int(year)] = bool(active)
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric subscription year %r", year)
        self.subscriptions = cleaned

    def has_subscription(self, year: Any) -> bool:
        try:
            return self.subscriptions.get(int(year), False)
        except (TypeError, ValueError):
            return False

    def resolve_year(self, resource: Resource) -> Optional[int]:
        return resource.effective_year or self.selected_year

    def can_access(self, resource: Resource) -> bool:
        if not resource.has_access:
            return False
        return self.has_subscription(self.resolve_year(resource))

    def subscription_scope(self, resource: Resource) -> Dict[str, Any]:
        """Scope to request when the student subscribes from this resource."""
        return {
            "year": self.resolve_year(resource),
            "semester": resource.effective_semester,
            "unitCode": resource.effective_unit_code,
            "unitName": resource.effective_unit_name,
        }

    def decide(self, resource: Resource) -> AccessDecision:
        """
        Pick the affordance for a resource.

        Download-gated resources need a subscription first. Downloadable
        ones are registered as downloads and then opened protected. Past
        that, anything the student cannot access leads to subscribing, and
        screenshot-protected or view-only content opens in the secure viewer.
        """
        year = self.resolve_year(resource)
        rules = resource.access_rules
        subscribed = self.has_subscription(year)

        if rules.download_requires_subscription and not subscribed:
            return self._subscribe(resource, "Download requires an active subscription")
        if rules.can_download and resource.has_access:
            return AccessDecision(Affordance.DOWNLOAD, year=year)

        if not self.can_access(resource):
            return self._subscribe(resource, "No active subscription for this year")

        if rules.requires_secure_view:
            return AccessDecision(Affordance.SECURE_VIEW, year=year)
        return AccessDecision(Affordance.VIEW, year=year)

    def _subscribe(self, resource: Resource, reason: str) -> AccessDecision:
        scope = self.subscription_scope(resource)
        return AccessDecision(Affordance.SUBSCRIBE, year=scope["year"], scope=scope, reason=reason)

    def secure_image_target(self, resource: Resource) -> SecureImageTarget:
        """
        Validate a CAT or past exam for the secure image viewer.

        Raises:
            ValidationError: if the type is not viewable or no valid id is present
        """
        if resource.type not in ("cats", "pastExams"):
            raise ValidationError(f"Secure viewing is not available for {resource.type or 'this content'}")

        # Composite ids ("<unit>-<assessment>-cats") lead with the unit id
        raw_id = resource.assessment_id or resource.raw.get("_id") or resource.id
        assessment_id = extract_object_id(raw_id)
        if not assessment_id:
            raise ValidationError("Invalid assessment ID format")
        return SecureImageTarget(kind=resource.type, assessment_id=assessment_id, title=resource.title)

    def download_payload(self, resource: Resource, course_id: str) -> Dict[str, Any]:
        """Body for registering a download before the file is opened."""
        unit = resource.unit
        return {
            "courseId": course_id,
            "year": (unit.year if unit and unit.year else None) or self.selected_year,
            "unitId": (unit.id if unit else None) or resource.unit_id,
            "unitName": resource.effective_unit_name,
            "topicId": resource.topic.id if resource.topic else None,
            "topicTitle": resource.topic.title if resource.topic else None,
            "resourceId": resource.id or resource.filename,
            "resourceTitle": resource.title,
            "filename": resource.filename,
            "fileSize": resource.file_size,
        }

    def apply_subscription(self, subscription: Any) -> int:
        """
        Record a completed purchase in the cached map.

        Accepts a Subscription, a SubscriptionScope or a raw year. Returns
        the year that was unlocked; callers refetch content afterwards.
        """
        if isinstance(subscription, Subscription):
            year = subscription.year
        elif isinstance(subscription, SubscriptionScope):
            year = subscription.year
        elif isinstance(subscription, Mapping):
            year = int(subscription.get("year"))
        else:
            year = int(subscription)
        self.subscriptions[year] = True
        logger.info("Subscription unlocked year %s", year)
        return year

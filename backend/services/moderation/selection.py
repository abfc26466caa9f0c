"""
Selection state for bulk moderation.

Selected items live in one ordered key -> item map; the set of keys is
derived from it, so the payloads submitted at delete time can never
drift from the keys shown as selected.
"""
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional

TOPIC_SCOPED_TYPES = ("video", "notes", "youtube_link")
ASSESSMENT_TYPES = ("cats", "assignments", "pastExams")


def item_key(item: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Stable key for a content row.

    Prefers the row's own id, then its assessment id, then a composite of
    topic or unit with the content type.
    """
    if not item:
        return None
    if item.get("id"):
        return str(item["id"])
    if item.get("_id"):
        return str(item["_id"])
    if item.get("assessmentId"):
        return str(item["assessmentId"])
    if item.get("topicId"):
        return f"{item['topicId']}-{item.get('type') or ''}"
    return f"{item.get('unitId') or 'unit'}-{item.get('type') or 'content'}"


def delete_payload(item: Dict[str, Any], strict: bool = False) -> Dict[str, Any]:
    """
    Build the delete request entry for one content row.

    Topic-scoped rows carry their own id, since a topic can hold several
    assets of one type. With strict=True a topic-scoped row without
    topicId, or an assessment without assessmentId, raises ValueError
    instead of being sent as is.
    """
    content_type = item.get("type")
    payload = {
        "courseId": item.get("courseId"),
        "unitId": item.get("unitId"),
        "contentType": content_type,
    }

    if content_type in TOPIC_SCOPED_TYPES:
        if item.get("topicId"):
            payload["topicId"] = item["topicId"]
        elif strict:
            raise ValueError("Missing topicId for topic-based content")
        if item.get("id"):
            payload["id"] = item["id"]

    if content_type in ASSESSMENT_TYPES:
        if item.get("assessmentId"):
            payload["assessmentId"] = item["assessmentId"]
        elif strict:
            raise ValueError("Missing assessmentId for assessment content")

    return payload


def payload_signature(payload: Dict[str, Any]) -> tuple:
    """Identity of a delete request entry, used to match server results back."""
    return (
        payload.get("contentType"),
        payload.get("courseId"),
        payload.get("unitId"),
        payload.get("topicId"),
        payload.get("assessmentId"),
        payload.get("id"),
    )


def is_pending(item: Dict[str, Any]) -> bool:
    return (item.get("status") or "pending").lower() == "pending"


class ContentSelection:
    """Ordered selection of pending content rows."""

    def __init__(self):
        self._items: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    @property
    def keys(self) -> List[str]:
        return list(self._items.keys())

    @property
    def items(self) -> List[Dict[str, Any]]:
        return list(self._items.values())

    def is_selected(self, item: Dict[str, Any]) -> bool:
        return item_key(item) in self._items

    def toggle(self, item: Dict[str, Any]) -> bool:
        """
        Flip the selection of one row. Non-pending rows are ignored.

        Returns:
            Whether the row is selected afterwards.
        """
        key = item_key(item)
        if key is None or not is_pending(item):
            return False
        if key in self._items:
            del self._items[key]
            return False
        self._items[key] = item
        return True

    def toggle_all(self, view: Iterable[Dict[str, Any]]) -> None:
        """
        Select every pending row of the current view, or deselect them all
        when every one of them is already selected.
        """
        pending = [(item_key(item), item) for item in view if is_pending(item)]
        pending = [(key, item) for key, item in pending if key]

        if pending and all(key in self._items for key, _ in pending):
            for key, _ in pending:
                self._items.pop(key, None)
        else:
            for key, item in pending:
                self._items[key] = item

    def all_selected(self, view: Iterable[Dict[str, Any]]) -> bool:
        keys = [item_key(item) for item in view if is_pending(item)]
        return bool(keys) and all(key in self._items for key in keys)

    def discard(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

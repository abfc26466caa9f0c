"""
Admin content-status board: listing, filtering and (bulk) deletion of
uploaded content, reconciled against the server's per-item results.
"""
import logging
from typing import Any, Dict, List, Optional, Set

import httpx

from core.api_client import ApiError, EduVaultClient
from models.moderation_models import ContentStats, DeleteOutcome
from services.moderation.selection import (
    ContentSelection,
    delete_payload,
    is_pending,
    item_key,
    payload_signature,
)

logger = logging.getLogger(__name__)

STATUS_TABS = {0: None, 1: "pending", 2: "approved", 3: "rejected"}
TYPE_TABS = {0: None, 1: "video", 2: "notes", 3: "cats", 4: "pastExams"}

DELETE_PERMISSION_MESSAGE = (
    "You do not have permission to delete this content. "
    "Please ensure you are logged in as an admin or super admin."
)
BULK_PERMISSION_MESSAGE = (
    "You do not have permission to delete content. "
    "Please ensure you have the necessary permissions."
)
DELETE_FAILED_MESSAGE = "Failed to delete content"
BULK_FAILED_MESSAGE = "Failed to delete selected items. Please try again."
LOAD_FAILED_MESSAGE = "Failed to fetch content status"


class ModerationError(Exception):
    """A delete the server did not carry out."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DeletePermissionError(ModerationError, PermissionError):
    pass


def _response_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _failure_messages(body: Dict[str, Any]) -> str:
    return ", ".join(f.get("message", "") for f in body.get("failures") or [] if f.get("message"))


class ContentStatusBoard:
    """Local state of the content-status screen for one admin."""

    def __init__(self, client: EduVaultClient):
        self.client = client
        self.items: List[Dict[str, Any]] = []
        self.stats = ContentStats()
        self.selection = ContentSelection()
        self.error: Optional[str] = None

    # ------------------------------------------------------------------
    # Loading and filtering
    # ------------------------------------------------------------------

    def load(self) -> List[Dict[str, Any]]:
        try:
            body = self.client.get_content_status()
        except ApiError as e:
            logger.error("Error fetching content status: %s", e)
            self.error = LOAD_FAILED_MESSAGE
            raise

        raw = body.get("content") or body.get("pendingContent") or []
        self.items = []
        for item in raw:
            normalized = dict(item)
            normalized["status"] = (item.get("status") or "pending").lower()
            normalized["key"] = item_key(item)
            self.items.append(normalized)

        self.stats = ContentStats.from_items(self.items)
        self.selection.clear()
        self.error = None
        logger.info("Loaded %d content items", len(self.items))
        return self.items

    def filtered(self, status_tab: int = 0, type_tab: int = 0) -> List[Dict[str, Any]]:
        wanted_type = TYPE_TABS.get(type_tab)
        wanted_status = STATUS_TABS.get(status_tab)
        return [
            item for item in self.items
            if (wanted_type is None or item.get("type") == wanted_type)
            and (wanted_status is None or item.get("status") == wanted_status)
        ]

    def is_bulk_mode(self, status_tab: int, type_tab: int = 0) -> bool:
        return status_tab == 1 and len(self.filtered(status_tab, type_tab)) > 0

    def toggle_all(self, status_tab: int, type_tab: int = 0) -> None:
        self.selection.toggle_all(self.filtered(status_tab, type_tab))

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_one(self, item: Dict[str, Any]) -> DeleteOutcome:
        """
        Delete a single row. Only a 200 removes it locally.

        Raises:
            ValueError: when the row lacks its topic or assessment id
            DeletePermissionError: on 403
            ModerationError: on any other non-200 status
        """
        payload = delete_payload(item, strict=True)
        key = item_key(item)
        self.error = None

        response = self.client.delete_content_items([payload])
        body = _response_body(response)

        if response.status_code == 403:
            self.error = DELETE_PERMISSION_MESSAGE
            raise DeletePermissionError(DELETE_PERMISSION_MESSAGE, 403)
        if response.status_code != 200:
            message = _failure_messages(body) or body.get("message") or DELETE_FAILED_MESSAGE
            self.error = message
            raise ModerationError(message, response.status_code)

        self._remove({key: item})
        return DeleteOutcome(status_code=200, removed_keys=[key], message="Content deleted successfully")

    def bulk_delete(self) -> DeleteOutcome:
        """
        Delete every selected pending row in one request.

        On 207 only rows whose result reports success are removed; rows with
        a failed result or with no result at all stay, and `error` carries
        a failure count.

        Raises:
            DeletePermissionError: on 403, with no local change
            ModerationError: on any status other than 200/207/403
        """
        targets = {key: item for key, item in zip(self.selection.keys, self.selection.items) if is_pending(item)}
        if not targets:
            return DeleteOutcome(status_code=200)

        self.error = None
        payloads = {key: delete_payload(item) for key, item in targets.items()}
        response = self.client.delete_content_items(list(payloads.values()))
        body = _response_body(response)
        status = response.status_code

        if status == 403:
            self.error = BULK_PERMISSION_MESSAGE
            raise DeletePermissionError(BULK_PERMISSION_MESSAGE, 403)

        if status == 200:
            removed = dict(targets)
            outcome = DeleteOutcome(status_code=200, removed_keys=list(removed))
        elif status == 207:
            outcome = self._reconcile(targets, payloads, body.get("results") or [])
            removed = {key: targets[key] for key in outcome.removed_keys}
        else:
            message = body.get("message") or DELETE_FAILED_MESSAGE
            logger.error("Bulk delete failed with HTTP %s: %s", status, message)
            self.error = BULK_FAILED_MESSAGE
            raise ModerationError(message, status)

        self._remove(removed)
        if outcome.partial:
            self.error = outcome.message
        logger.info(
            "Bulk delete: %d removed, %d failed, %d unconfirmed",
            len(outcome.removed_keys), len(outcome.failed_keys), len(outcome.unconfirmed_keys),
        )
        return outcome

    def _reconcile(
        self,
        targets: Dict[str, Dict[str, Any]],
        payloads: Dict[str, Dict[str, Any]],
        results: List[Dict[str, Any]],
    ) -> DeleteOutcome:
        succeeded: Set[Any] = set()
        failed: Set[Any] = set()
        for result in results:
            result_item = result.get("item") or {}
            result_key = result_item.get("key") or result_item.get("id")
            signature = result_key if result_key in targets else payload_signature(result_item)
            if result.get("success"):
                succeeded.add(signature)
            else:
                failed.add(signature)

        outcome = DeleteOutcome(status_code=207)
        for key in targets:
            signature = payload_signature(payloads[key])
            if key in failed or signature in failed:
                outcome.failed_keys.append(key)
            elif key in succeeded or signature in succeeded:
                outcome.removed_keys.append(key)
            else:
                outcome.unconfirmed_keys.append(key)

        not_removed = len(outcome.failed_keys) + len(outcome.unconfirmed_keys)
        if not_removed:
            outcome.message = (
                f"Some items could not be deleted ({not_removed} of {len(targets)} failed)."
            )
        return outcome

    def _remove(self, removed: Dict[str, Dict[str, Any]]) -> None:
        if not removed:
            return
        self.items = [item for item in self.items if item_key(item) not in removed]
        for key, item in removed.items():
            self.stats.decrement(item.get("status") or "pending")
            self.selection.discard(key)

"""
Server-side subscription lifecycle: STK push initiation, status, direct
provider query, the M-Pesa result callback and entitlement checks.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from core import mpesa_client
from core.config import MAX_STUDY_YEARS, SUBSCRIPTION_DURATION_DAYS, SUBSCRIPTION_PRICE
from core.database import db, row_to_dict
from core.errors import ContentNotFoundError, SubscriptionError, ValidationFailed
from core.mpesa_client import MpesaClient, MpesaError, PENDING_RESULT_CODES
from core.security import new_object_id
from models.subscription_models import SubscriptionStatus
from services.catalog import repository
from services.payments.phone import normalize_phone

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _provider() -> MpesaClient:
    return mpesa_client.mpesa


def subscription_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["subscription_id"],
        "userId": row["user_id"],
        "courseId": row["course_id"],
        "year": row["year"],
        "semester": row.get("semester"),
        "unitCode": row.get("unit_code"),
        "unitName": row.get("unit_name"),
        "notes": row.get("notes"),
        "phoneNumber": row["phone_number"],
        "amount": row["amount"],
        "status": row["status"],
        "transactionId": row.get("transaction_id"),
        "resultDesc": row.get("result_desc"),
        "startDate": row.get("start_date"),
        "endDate": row.get("end_date"),
        "createdAt": row.get("created_at"),
    }


def _get_row(subscription_id: str) -> Optional[Dict[str, Any]]:
    return row_to_dict(db.execute_one("SELECT * FROM subscriptions WHERE subscription_id = ?", (subscription_id,)))


def get_subscription(user_id: str, subscription_id: str) -> Dict[str, Any]:
    """A subscription owned by the user (404 for anyone else's)."""
    row = _get_row(subscription_id)
    if row is None or row["user_id"] != user_id:
        raise ContentNotFoundError("Subscription not found")
    return subscription_to_api(row)


def active_subscription(
    user_id: str,
    course_id: str,
    year: int,
    semester: Optional[int] = None,
) -> Optional[Dict[str, Any]]:
    """
    The user's completed, unexpired subscription covering the scope.

    A subscription without a semester covers the whole year; one with a
    semester only covers that semester.
    """
    rows = db.execute(
        """
        SELECT * FROM subscriptions
        WHERE user_id = ? AND course_id = ? AND year = ? AND status = ? AND end_date > ?
        ORDER BY end_date DESC
        """,
        (user_id, course_id, int(year), SubscriptionStatus.COMPLETED.value, _now().isoformat()),
    )
    for row in rows:
        data = row_to_dict(row)
        if semester is None or data.get("semester") is None or data["semester"] == int(semester):
            return data
    return None


def has_active_subscription(user_id: str, course_id: str, year: int, semester: Optional[int] = None) -> bool:
    return active_subscription(user_id, course_id, year, semester) is not None


def subscriptions_by_year(user_id: str, course_id: str, year: Optional[int] = None) -> Dict[int, bool]:
    """Per-year subscription map for the content payload (all study years unless one is asked for)."""
    years = [int(year)] if year else range(1, MAX_STUDY_YEARS + 1)
    return {y: has_active_subscription(user_id, course_id, y) for y in years}


def initiate(
    user_id: str,
    course_id: str,
    year: int,
    phone_number: str,
    semester: Optional[int] = None,
    unit_code: Optional[str] = None,
    unit_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a pending subscription and send the STK push.

    Raises:
        ValidationFailed: bad year or phone number
        ContentNotFoundError: unknown course
        SubscriptionError: the push could not be sent (row marked failed)
    """
    if not 1 <= int(year) <= MAX_STUDY_YEARS:
        raise ValidationFailed(f"Year must be between 1 and {MAX_STUDY_YEARS}")

    phone = normalize_phone(phone_number)
    if len(phone) != 12 or not phone.startswith("254"):
        raise ValidationFailed("Please enter a valid phone number")

    course = repository.get_course_row(course_id)

    subscription_id = new_object_id()
    now = _now().isoformat()
    db.execute_write(
        """
        INSERT INTO subscriptions
            (subscription_id, user_id, course_id, year, semester, unit_code, unit_name, notes,
             phone_number, amount, status, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            subscription_id, user_id, course_id, int(year), semester, unit_code, unit_name, notes,
            phone, SUBSCRIPTION_PRICE, SubscriptionStatus.PENDING.value, now, now,
        ),
    )

    reference = course.get("code") or course["name"]
    try:
        push = _provider().stk_push(
            phone_number=phone,
            amount=SUBSCRIPTION_PRICE,
            account_reference=reference,
            transaction_desc=f"Year {year} access",
        )
    except MpesaError as e:
        logger.error("STK push failed for subscription %s: %s", subscription_id, e)
        _mark(subscription_id, SubscriptionStatus.FAILED, result_desc=str(e))
        raise SubscriptionError("Payment initiation failed. Please try again.") from e

    db.execute_write(
        """
        UPDATE subscriptions
        SET checkout_request_id = ?, merchant_request_id = ?, updated_at = ?
        WHERE subscription_id = ?
        """,
        (push["checkout_request_id"], push["merchant_request_id"], _now().isoformat(), subscription_id),
    )
    logger.info("STK push sent for subscription %s (checkout %s)", subscription_id, push["checkout_request_id"])

    return {
        "subscription": subscription_to_api(_get_row(subscription_id)),
        "customerMessage": push.get("customer_message"),
    }


def query(user_id: str, subscription_id: str) -> Dict[str, Any]:
    """
    Ask M-Pesa directly for the outcome of a still-pending push.

    Raises:
        SubscriptionError: the provider could not be queried
    """
    row = _get_row(subscription_id)
    if row is None or row["user_id"] != user_id:
        raise ContentNotFoundError("Subscription not found")

    if row["status"] != SubscriptionStatus.PENDING.value or not row.get("checkout_request_id"):
        return subscription_to_api(row)

    try:
        result = _provider().stk_query(row["checkout_request_id"])
    except MpesaError as e:
        logger.warning("STK query failed for subscription %s: %s", subscription_id, e)
        raise SubscriptionError("Unable to query payment status") from e

    if result["pending"]:
        return subscription_to_api(row)

    if result["result_code"] == "0":
        _complete(subscription_id, transaction_id=None, result_desc=result.get("result_desc"))
    elif result["result_code"] not in PENDING_RESULT_CODES:
        _mark(subscription_id, SubscriptionStatus.FAILED, result_code=result["result_code"],
              result_desc=result.get("result_desc"))
    return subscription_to_api(_get_row(subscription_id))


def handle_callback(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Apply an STK push result callback.

    Returns:
        The updated subscription, or None when the callback matches nothing.
    """
    callback = (body.get("Body") or {}).get("stkCallback") or {}
    checkout_id = callback.get("CheckoutRequestID")
    if not checkout_id:
        logger.warning("M-Pesa callback without CheckoutRequestID")
        return None

    row = row_to_dict(db.execute_one(
        "SELECT * FROM subscriptions WHERE checkout_request_id = ?", (checkout_id,)
    ))
    if row is None:
        logger.warning("M-Pesa callback for unknown checkout %s", checkout_id)
        return None
    if row["status"] != SubscriptionStatus.PENDING.value:
        logger.info("Ignoring duplicate callback for subscription %s", row["subscription_id"])
        return subscription_to_api(row)

    result_code = str(callback.get("ResultCode"))
    result_desc = callback.get("ResultDesc")
    if result_code == "0":
        items = (callback.get("CallbackMetadata") or {}).get("Item") or []
        receipt = next((i.get("Value") for i in items if i.get("Name") == "MpesaReceiptNumber"), None)
        _complete(row["subscription_id"], transaction_id=receipt, result_desc=result_desc)
    else:
        _mark(row["subscription_id"], SubscriptionStatus.FAILED, result_code=result_code, result_desc=result_desc)

    return subscription_to_api(_get_row(row["subscription_id"]))


def _complete(subscription_id: str, transaction_id: Optional[str], result_desc: Optional[str]) -> None:
    start = _now()
    end = start + timedelta(days=SUBSCRIPTION_DURATION_DAYS)
    db.execute_write(
        """
        UPDATE subscriptions
        SET status = ?, transaction_id = COALESCE(?, transaction_id), result_code = '0', result_desc = ?,
            start_date = ?, end_date = ?, updated_at = ?
        WHERE subscription_id = ?
        """,
        (
            SubscriptionStatus.COMPLETED.value, transaction_id, result_desc,
            start.isoformat(), end.isoformat(), start.isoformat(), subscription_id,
        ),
    )
    logger.info("Subscription %s completed (receipt %s)", subscription_id, transaction_id)


def _mark(
    subscription_id: str,
    status: SubscriptionStatus,
    result_code: Optional[str] = None,
    result_desc: Optional[str] = None,
) -> None:
    db.execute_write(
        """
        UPDATE subscriptions SET status = ?, result_code = ?, result_desc = ?, updated_at = ?
        WHERE subscription_id = ?
        """,
        (status.value, result_code, result_desc, _now().isoformat(), subscription_id),
    )
    logger.info("Subscription %s marked %s (%s)", subscription_id, status.value, result_desc)

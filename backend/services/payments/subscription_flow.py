"""
Client-side M-Pesa subscription flow: initiate an STK push, then poll the
backend until the payment completes, fails or the retry budget runs out.
"""
import logging
from typing import Any, Callable, Dict, Optional

from core.api_client import ApiError, EduVaultClient, RequestCancelled, TransportError
from core.config import (
    SUBSCRIPTION_POLL_INITIAL_DELAY_SECONDS,
    SUBSCRIPTION_POLL_INTERVAL_SECONDS,
    SUBSCRIPTION_POLL_MAX_ATTEMPTS,
    SUBSCRIPTION_QUERY_AFTER_ATTEMPTS,
    SUBSCRIPTION_SUCCESS_CLOSE_DELAY_SECONDS,
)
from core.scheduling import CancelToken, interruptible_sleep
from models.subscription_models import PaymentFlowState, Subscription, SubscriptionStatus
from services.payments.phone import normalize_phone

logger = logging.getLogger(__name__)

INVALID_PHONE = "Please enter a valid phone number"
INITIATE_FAILED = "Payment initiation failed"
PUSH_SENT = (
    "Payment request sent! Please check your phone for M-Pesa prompt "
    "and enter your PIN to complete the payment."
)
PAYMENT_SUCCESS = "Payment successful! Your premium subscription is now active."
PAYMENT_CONFIRMED = "Payment confirmed! Your premium subscription is now active."
PAYMENT_FAILED = "Payment failed. Please try again or check your M-Pesa balance."
QUERY_FAILED = "Payment failed. Please try again."
PAYMENT_TIMEOUT = (
    "Payment timeout. If you completed the payment, please wait a few "
    "minutes and refresh the page."
)
UNABLE_TO_VERIFY = "Unable to verify payment status. Please contact support if payment was deducted."

MIN_PHONE_LENGTH = 10

Sleeper = Callable[[float, Optional[CancelToken]], bool]


class SubscriptionFlow:
    """
    One subscription dialog: a purchase for a (course, year[, semester][, unit]) scope.

    The poll loop blocks between checks using `sleep`, which returns False
    when the flow's CancelToken fires (the dialog was closed).

    Args:
        client: API client carrying the student's token
        course_id: course being purchased
        on_success: called with the completed Subscription
        on_close: called when the dialog should close
        sleep: interruptible sleeper, replaced by a fake in tests
    """

    def __init__(
        self,
        client: EduVaultClient,
        course_id: str,
        on_success: Optional[Callable[[Subscription], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        sleep: Sleeper = interruptible_sleep,
        poll_interval: float = SUBSCRIPTION_POLL_INTERVAL_SECONDS,
        max_attempts: int = SUBSCRIPTION_POLL_MAX_ATTEMPTS,
        query_after_attempts: int = SUBSCRIPTION_QUERY_AFTER_ATTEMPTS,
        initial_delay: float = SUBSCRIPTION_POLL_INITIAL_DELAY_SECONDS,
        success_close_delay: float = SUBSCRIPTION_SUCCESS_CLOSE_DELAY_SECONDS,
    ):
        self.client = client
        self.course_id = course_id
        self.on_success = on_success
        self.on_close = on_close
        self.sleep = sleep
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.query_after_attempts = query_after_attempts
        self.initial_delay = initial_delay
        self.success_close_delay = success_close_delay

        self.cancel_token = CancelToken()
        self.state = PaymentFlowState.IDLE
        self.error: Optional[str] = None
        self.success_message: Optional[str] = None
        self.subscription_id: Optional[str] = None
        self.subscription: Optional[Subscription] = None
        self.attempts = 0

    @property
    def can_retry(self) -> bool:
        """Whether the initial (phone entry) screen is usable."""
        return self.state in (PaymentFlowState.IDLE, PaymentFlowState.FAILED, PaymentFlowState.TIMED_OUT)

    @property
    def payment_initiated(self) -> bool:
        return self.state == PaymentFlowState.POLLING

    def pay(self, phone_number: str, year: int, **scope) -> PaymentFlowState:
        """Initiate and, when the push was sent, poll to a terminal state."""
        subscription_id = self.initiate(phone_number, year, **scope)
        if subscription_id is None:
            return self.state
        return self.poll(subscription_id)

    def initiate(
        self,
        phone_number: str,
        year: int,
        semester: Optional[int] = None,
        unit_code: Optional[str] = None,
        unit_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[str]:
        """
        Ask the backend to send an STK push.

        Returns:
            The pending subscription's id, or None (see `error`).
        """
        if not self.can_retry:
            raise RuntimeError(f"Cannot initiate a payment while {self.state.value}")

        if not phone_number or len(phone_number) < MIN_PHONE_LENGTH:
            self.error = INVALID_PHONE
            return None

        payload: Dict[str, Any] = {
            "courseId": self.course_id,
            "year": int(year),
            "phoneNumber": normalize_phone(phone_number),
        }
        if semester is not None:
            payload["semester"] = int(semester)
        if unit_code:
            payload["unitCode"] = unit_code
        if unit_name:
            payload["unitName"] = unit_name
        if notes and notes.strip():
            payload["notes"] = notes.strip()

        self.state = PaymentFlowState.INITIATING
        self.error = None
        self.success_message = None
        try:
            body = self.client.initiate_subscription(payload)
        except TransportError as e:
            logger.warning("Payment initiation failed: %s", e)
            self.error = INITIATE_FAILED
            self.state = PaymentFlowState.IDLE
            return None
        except ApiError as e:
            self.error = e.message or INITIATE_FAILED
            self.state = PaymentFlowState.IDLE
            return None

        subscription = body.get("subscription") if isinstance(body, dict) else None
        subscription_id = subscription.get("id") if isinstance(subscription, dict) else None
        if not subscription_id:
            logger.warning("Payment initiation returned no subscription id: %s", body)
            self.error = INITIATE_FAILED
            self.state = PaymentFlowState.IDLE
            return None

        self.subscription_id = str(subscription_id)
        self.state = PaymentFlowState.POLLING
        self.success_message = PUSH_SENT
        logger.info("STK push sent for subscription %s", self.subscription_id)
        return self.subscription_id

    def poll(self, subscription_id: str) -> PaymentFlowState:
        """
        Poll the subscription's status until a terminal state.

        Each status check counts as one attempt, whether it answered
        pending or failed in transit. Once more than `query_after_attempts`
        checks have passed, the provider is also queried directly and
        failures of that query are ignored.
        """
        self.subscription_id = subscription_id
        self.state = PaymentFlowState.POLLING
        self.attempts = 0

        if not self.sleep(self.initial_delay, self.cancel_token):
            return self._cancelled()

        while True:
            try:
                body = self.client.get_subscription_status(subscription_id, cancel_token=self.cancel_token)
            except RequestCancelled:
                return self._cancelled()
            except ApiError as e:
                logger.warning("Error checking payment status: %s", e)
                self.attempts += 1
                if self.attempts >= self.max_attempts:
                    return self._give_up(UNABLE_TO_VERIFY)
                if not self.sleep(self.poll_interval, self.cancel_token):
                    return self._cancelled()
                continue

            subscription = Subscription.from_dict(body.get("subscription") or {})
            if subscription.status == SubscriptionStatus.COMPLETED:
                return self._complete(subscription, PAYMENT_SUCCESS)
            if subscription.status == SubscriptionStatus.FAILED:
                return self._give_up(PAYMENT_FAILED, state=PaymentFlowState.FAILED)

            if self.attempts > self.query_after_attempts:
                outcome = self._query_provider(subscription_id)
                if outcome is not None:
                    return outcome
                if self.cancel_token.cancelled:
                    return self._cancelled()

            self.attempts += 1
            if self.attempts >= self.max_attempts:
                return self._give_up(PAYMENT_TIMEOUT)
            if not self.sleep(self.poll_interval, self.cancel_token):
                return self._cancelled()

    def _query_provider(self, subscription_id: str) -> Optional[PaymentFlowState]:
        try:
            body = self.client.query_subscription(subscription_id, cancel_token=self.cancel_token)
        except (ApiError, RequestCancelled) as e:
            logger.info("Direct M-Pesa query failed, continuing with regular polling: %s", e)
            return None

        subscription = Subscription.from_dict(body.get("subscription") or {})
        if subscription.status == SubscriptionStatus.COMPLETED:
            return self._complete(subscription, PAYMENT_CONFIRMED)
        if subscription.status == SubscriptionStatus.FAILED:
            return self._give_up(QUERY_FAILED, state=PaymentFlowState.FAILED)
        return None

    def _complete(self, subscription: Subscription, message: str) -> PaymentFlowState:
        self.subscription = subscription
        self.state = PaymentFlowState.COMPLETED
        self.success_message = message
        self.error = None
        logger.info("Subscription %s completed after %s checks", subscription.id, self.attempts + 1)

        if not self.sleep(self.success_close_delay, self.cancel_token):
            return self.state
        if self.on_success is not None:
            self.on_success(subscription)
        self.close()
        return PaymentFlowState.COMPLETED

    def _give_up(self, message: str, state: PaymentFlowState = PaymentFlowState.TIMED_OUT) -> PaymentFlowState:
        self.error = message
        self.success_message = None
        self.state = state
        logger.info("Subscription %s ended as %s after %s checks", self.subscription_id, state.value, self.attempts)
        return state

    def _cancelled(self) -> PaymentFlowState:
        logger.debug("Polling for subscription %s cancelled", self.subscription_id)
        self.state = PaymentFlowState.CLOSED
        return self.state

    def close(self) -> None:
        """Close the dialog: stop polling and reset the form."""
        self.cancel_token.cancel()
        self.state = PaymentFlowState.CLOSED
        self.error = None
        self.success_message = None
        if self.on_close is not None:
            self.on_close()

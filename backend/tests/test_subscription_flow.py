"""
Tests for the client-side M-Pesa subscription flow.
"""
from unittest.mock import Mock

import pytest

from conftest import FakeSleeper
from core.api_client import ApiError, EduVaultClient, TransportError
from models.subscription_models import PaymentFlowState
from services.payments.subscription_flow import (
    INITIATE_FAILED,
    INVALID_PHONE,
    PAYMENT_FAILED,
    PAYMENT_TIMEOUT,
    PUSH_SENT,
    QUERY_FAILED,
    UNABLE_TO_VERIFY,
    SubscriptionFlow,
)

SUBSCRIPTION_ID = "sub-1"


def subscription_body(status, year=2):
    return {"subscription": {"id": SUBSCRIPTION_ID, "courseId": "course-1", "year": year, "status": status}}


@pytest.fixture
def client():
    client = Mock(spec=EduVaultClient)
    client.initiate_subscription.return_value = {
        "success": True,
        "message": "STK push sent",
        "subscription": {"id": SUBSCRIPTION_ID, "status": "pending"},
    }
    client.get_subscription_status.return_value = subscription_body("pending")
    client.query_subscription.return_value = subscription_body("pending")
    return client


class TestInitiate:
    """Test the STK push request."""

    def test_short_phone_is_rejected_locally(self, client, sleeper):
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        assert flow.initiate("07123", 1) is None
        assert flow.error == INVALID_PHONE
        client.initiate_subscription.assert_not_called()

    def test_payload_is_normalised(self, client, sleeper):
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        subscription_id = flow.initiate("0712 345 678", "2", semester=1, unit_code="CS201", notes="  ")
        assert subscription_id == SUBSCRIPTION_ID
        assert flow.state == PaymentFlowState.POLLING
        assert flow.success_message == PUSH_SENT
        client.initiate_subscription.assert_called_once_with({
            "courseId": "course-1",
            "year": 2,
            "phoneNumber": "254712345678",
            "semester": 1,
            "unitCode": "CS201",
        })

    def test_api_error_message_is_shown(self, client, sleeper):
        client.initiate_subscription.side_effect = ApiError("Failed to initiate M-Pesa payment", 502)
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        assert flow.initiate("0712345678", 1) is None
        assert flow.error == "Failed to initiate M-Pesa payment"
        assert flow.can_retry

    def test_network_error_uses_generic_message(self, client, sleeper):
        client.initiate_subscription.side_effect = TransportError("Network error: refused")
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        assert flow.pay("0712345678", 1) == PaymentFlowState.IDLE
        assert flow.error == INITIATE_FAILED
        client.get_subscription_status.assert_not_called()

    @pytest.mark.parametrize("body", [
        {"success": True, "message": "STK push sent"},
        {"success": True, "subscription": {"status": "pending"}},
        {"success": True, "subscription": None},
        [],
    ])
    def test_response_without_subscription_id(self, client, sleeper, body):
        client.initiate_subscription.return_value = body
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        assert flow.pay("0712345678", 1) == PaymentFlowState.IDLE
        assert flow.error == INITIATE_FAILED
        assert flow.subscription_id is None
        assert flow.can_retry
        client.get_subscription_status.assert_not_called()

    def test_cannot_initiate_while_polling(self, client, sleeper):
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        flow.initiate("0712345678", 1)
        with pytest.raises(RuntimeError):
            flow.initiate("0712345678", 1)


class TestPolling:
    """Test the poll loop and its retry budget."""

    def test_completion_notifies_and_closes(self, client, sleeper):
        client.get_subscription_status.side_effect = [subscription_body("pending"), subscription_body("completed")]
        on_success, on_close = Mock(), Mock()
        flow = SubscriptionFlow(client, "course-1", on_success=on_success, on_close=on_close, sleep=sleeper)

        assert flow.pay("0712345678", 2) == PaymentFlowState.COMPLETED
        assert sleeper.calls == [3, 10, 2]
        assert on_success.call_args.args[0].year == 2
        on_close.assert_called_once()
        assert flow.state == PaymentFlowState.CLOSED
        assert flow.cancel_token.cancelled

    def test_failed_payment(self, client, sleeper):
        client.get_subscription_status.return_value = subscription_body("failed")
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.FAILED
        assert flow.error == PAYMENT_FAILED
        assert flow.can_retry

    def test_timeout_after_budget(self, client, sleeper):
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.TIMED_OUT
        assert flow.error == PAYMENT_TIMEOUT
        assert client.get_subscription_status.call_count == 36
        assert client.query_subscription.call_count == 23
        assert sleeper.calls == [3] + [10] * 35

    def test_query_failures_are_ignored(self, client, sleeper):
        client.query_subscription.side_effect = ApiError("Failed to query payment status", 500)
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper, max_attempts=16)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.TIMED_OUT
        assert flow.error == PAYMENT_TIMEOUT
        assert client.query_subscription.call_count == 3

    def test_query_can_confirm_payment(self, client, sleeper):
        client.query_subscription.return_value = subscription_body("completed")
        on_success = Mock()
        flow = SubscriptionFlow(client, "course-1", on_success=on_success, sleep=sleeper)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.COMPLETED
        assert client.get_subscription_status.call_count == 14
        on_success.assert_called_once()

    def test_query_can_report_failure(self, client, sleeper):
        client.query_subscription.return_value = subscription_body("failed")
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.FAILED
        assert flow.error == QUERY_FAILED

    def test_status_errors_count_as_attempts(self, client, sleeper):
        client.get_subscription_status.side_effect = ApiError("boom", 500)
        flow = SubscriptionFlow(client, "course-1", sleep=sleeper, max_attempts=5)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.TIMED_OUT
        assert flow.error == UNABLE_TO_VERIFY
        assert client.get_subscription_status.call_count == 5
        client.query_subscription.assert_not_called()


class TestCancellation:
    def test_close_stops_polling(self, client):
        sleeper = FakeSleeper(cancel_on_call=3)
        on_success = Mock()
        flow = SubscriptionFlow(client, "course-1", on_success=on_success, sleep=sleeper)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.CLOSED
        assert client.get_subscription_status.call_count == 2
        on_success.assert_not_called()

    def test_close_during_success_delay_skips_callback(self, client):
        client.get_subscription_status.return_value = subscription_body("completed")
        sleeper = FakeSleeper(cancel_on_call=2)
        on_success = Mock()
        flow = SubscriptionFlow(client, "course-1", on_success=on_success, sleep=sleeper)
        assert flow.poll(SUBSCRIPTION_ID) == PaymentFlowState.COMPLETED
        on_success.assert_not_called()

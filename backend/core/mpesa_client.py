"""
M-Pesa Daraja API client wrapper (STK push and STK push query).
"""
import base64
import logging
from datetime import datetime
from typing import Optional, Dict, Any

import httpx

from core.config import (
    MPESA_BASE_URL,
    MPESA_CONSUMER_KEY,
    MPESA_CONSUMER_SECRET,
    MPESA_SHORTCODE,
    MPESA_PASSKEY,
    MPESA_CALLBACK_URL,
    MPESA_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

# STK query result codes that mean the customer has not finished yet
PENDING_RESULT_CODES = {"4999", "500.001.1001"}


class MpesaError(Exception):
    """Raised when the M-Pesa API rejects or fails a request."""
    pass


class MpesaClient:
    """Client for the Safaricom Daraja STK push endpoints."""

    def __init__(
        self,
        base_url: str = MPESA_BASE_URL,
        consumer_key: Optional[str] = MPESA_CONSUMER_KEY,
        consumer_secret: Optional[str] = MPESA_CONSUMER_SECRET,
        shortcode: str = MPESA_SHORTCODE,
        passkey: Optional[str] = MPESA_PASSKEY,
        callback_url: str = MPESA_CALLBACK_URL,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.client = http_client or httpx.Client(timeout=MPESA_TIMEOUT_SECONDS)

    @property
    def enabled(self) -> bool:
        return bool(self.consumer_key and self.consumer_secret and self.passkey)

    def _password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    @staticmethod
    def _timestamp(now: Optional[datetime] = None) -> str:
        return (now or datetime.now()).strftime("%Y%m%d%H%M%S")

    def get_access_token(self) -> str:
        """Fetch an OAuth access token using the consumer credentials."""
        url = f"{self.base_url}/oauth/v1/generate"
        try:
            response = self.client.get(
                url,
                params={"grant_type": "client_credentials"},
                auth=(self.consumer_key or "", self.consumer_secret or ""),
            )
            response.raise_for_status()
            return response.json()["access_token"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("M-Pesa token error: %s", e)
            raise MpesaError("Failed to get M-Pesa access token") from e

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        token = self.get_access_token()
        try:
            response = self.client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise MpesaError(f"M-Pesa API error: {e}") from e

    def stk_push(
        self,
        phone_number: str,
        amount: int,
        account_reference: str,
        transaction_desc: str,
    ) -> Dict[str, Any]:
        """
        Send an STK push prompt to the payer's phone.

        Returns:
            {"checkout_request_id", "merchant_request_id", "response_code",
             "response_description", "customer_message"}
        """
        if not self.enabled:
            raise MpesaError("M-Pesa is not configured")

        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference[:12],
            "TransactionDesc": transaction_desc[:13],
        }
        data = self._post("/mpesa/stkpush/v1/processrequest", payload)
        if str(data.get("ResponseCode", "")) != "0":
            raise MpesaError(data.get("errorMessage") or data.get("ResponseDescription") or "STK push rejected")

        return {
            "checkout_request_id": data.get("CheckoutRequestID"),
            "merchant_request_id": data.get("MerchantRequestID"),
            "response_code": str(data.get("ResponseCode")),
            "response_description": data.get("ResponseDescription"),
            "customer_message": data.get("CustomerMessage"),
        }

    def stk_query(self, checkout_request_id: str) -> Dict[str, Any]:
        """
        Query the provider directly for the outcome of an STK push.

        Returns:
            {"result_code": str | None, "result_desc": str | None, "pending": bool}
        """
        if not self.enabled:
            raise MpesaError("M-Pesa is not configured")

        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        token = self.get_access_token()
        try:
            response = self.client.post(
                f"{self.base_url}/mpesa/stkpushquery/v1/query",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
            data = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as e:
            raise MpesaError(f"M-Pesa API error: {e}") from e

        # Daraja answers "still processing" with an error body rather than a result
        error_code = data.get("errorCode")
        if error_code is not None:
            if str(error_code) in PENDING_RESULT_CODES:
                return {"result_code": None, "result_desc": data.get("errorMessage"), "pending": True}
            raise MpesaError(data.get("errorMessage") or f"STK query failed ({error_code})")
        if response.status_code >= 400:
            raise MpesaError(f"STK query failed with HTTP {response.status_code}")

        result_code = data.get("ResultCode")
        return {
            "result_code": str(result_code) if result_code is not None else None,
            "result_desc": data.get("ResultDesc"),
            "pending": result_code is None,
        }


# Global M-Pesa client instance
mpesa = MpesaClient()

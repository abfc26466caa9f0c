"""
Subscription payment routes (M-Pesa STK push).
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from api.deps import get_current_user, http_error
from api.models.requests import SubscriptionInitiateRequest
from api.models.responses import CallbackAck, SubscriptionEnvelope, SubscriptionInitiateResponse
from core.errors import ServiceError
from services.payments import subscription_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/initiate", response_model=SubscriptionInitiateResponse)
async def initiate(request: SubscriptionInitiateRequest, user: Dict[str, Any] = Depends(get_current_user)):
    """Create a pending subscription and send the STK push to the phone."""
    try:
        result = subscription_service.initiate(
            user_id=user["user_id"],
            course_id=request.course_id,
            year=request.year,
            phone_number=request.phone_number,
            semester=request.semester,
            unit_code=request.unit_code,
            unit_name=request.unit_name,
            notes=request.notes,
        )
    except ServiceError as e:
        raise http_error(e)
    return {
        "success": True,
        "message": "Payment request sent. Check your phone to complete the payment.",
        "subscription": result["subscription"],
        "customer_message": result["customerMessage"],
    }


@router.get("/status/{subscription_id}", response_model=SubscriptionEnvelope)
async def status(subscription_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return {"subscription": subscription_service.get_subscription(user["user_id"], subscription_id)}
    except ServiceError as e:
        raise http_error(e)


@router.get("/query/{subscription_id}", response_model=SubscriptionEnvelope)
async def query(subscription_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    """Ask M-Pesa directly about a push that is still pending."""
    try:
        return {"subscription": subscription_service.query(user["user_id"], subscription_id)}
    except ServiceError as e:
        raise http_error(e)


@router.post("/mpesa/callback", response_model=CallbackAck)
async def mpesa_callback(request: Request):
    """STK push result from Safaricom. Always acknowledged so M-Pesa stops retrying."""
    try:
        body = await request.json()
    except ValueError:
        logger.warning("M-Pesa callback with unreadable body")
        return CallbackAck()
    if isinstance(body, dict):
        subscription_service.handle_callback(body)
    return CallbackAck()

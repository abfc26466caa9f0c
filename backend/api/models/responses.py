"""
Pydantic response models for API endpoints.
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any


class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str


class AuthResponse(BaseModel):
    """Response model for register and login."""
    message: str
    token: str
    user: Dict[str, Any]


class SecureMetadataResponse(BaseModel):
    """Envelope of the secure viewer metadata endpoint."""
    success: bool = True
    data: Dict[str, Any]


class SubscriptionEnvelope(BaseModel):
    """Response model for subscription status and query."""
    subscription: Dict[str, Any]


class SubscriptionInitiateResponse(BaseModel):
    """Response model for a sent STK push."""
    success: bool = True
    message: str
    subscription: Dict[str, Any]
    customer_message: Optional[str] = Field(default=None, serialization_alias="customerMessage")


class CallbackAck(BaseModel):
    """Acknowledgement M-Pesa expects from the result callback."""
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


class AssessmentListResponse(BaseModel):
    assessments: List[Dict[str, Any]]


class AssessmentResponse(BaseModel):
    message: str
    assessment: Dict[str, Any]


class DownloadListResponse(BaseModel):
    downloads: List[Dict[str, Any]]


class DownloadResponse(BaseModel):
    download: Dict[str, Any]

"""
Authentication API routes.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.deps import get_current_user, http_error
from api.models.requests import LoginRequest, RegisterRequest
from api.models.responses import AuthResponse
from core.errors import ServiceError
from services.auth import user_service

router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(request: RegisterRequest):
    """Register a student account."""
    try:
        return user_service.register(request.model_dump(by_alias=True))
    except ServiceError as e:
        raise http_error(e)


@router.post("/login", response_model=AuthResponse)
async def login(request: LoginRequest):
    try:
        return user_service.login(request.email, request.password)
    except ServiceError as e:
        raise http_error(e)


@router.get("/me")
async def me(user: Dict[str, Any] = Depends(get_current_user)):
    return {"user": user_service.user_to_api(user)}

"""
Student download routes.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.deps import get_current_user, http_error
from api.models.requests import DownloadRequest
from api.models.responses import DownloadListResponse, DownloadResponse, MessageResponse
from core.errors import ServiceError
from services.downloads import download_service

router = APIRouter()


@router.get("", response_model=DownloadListResponse)
async def list_downloads(user: Dict[str, Any] = Depends(get_current_user)):
    return {"downloads": download_service.list_downloads(user["user_id"])}


@router.post("", response_model=DownloadResponse)
async def register_download(request: DownloadRequest, user: Dict[str, Any] = Depends(get_current_user)):
    """Record a download; it expires together with the subscription."""
    try:
        download = download_service.register_download(user["user_id"], request.model_dump(by_alias=True))
    except ServiceError as e:
        raise http_error(e)
    return {"download": download}


@router.delete("/{download_id}", response_model=MessageResponse)
async def delete_download(download_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        download_service.delete_download(user["user_id"], download_id)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Download removed successfully"}

"""
Photo library endpoints.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.auth.dependencies import get_current_user
from pawstudio.database import get_db
from pawstudio.models.user import User
from pawstudio.services.photo_service import PhotoService
from pawstudio.storage.b2_client import B2Client, get_b2_client

router = APIRouter()


class PhotoItem(BaseModel):
    id: int
    originalFilename: Optional[str] = None
    fileUrl: str
    fileSize: Optional[int] = None
    uploadedAt: datetime


class LibraryResponse(BaseModel):
    success: bool = True
    photos: List[PhotoItem]


@router.get("/library", response_model=LibraryResponse)
async def photo_library(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: B2Client = Depends(get_b2_client),
):
    photos = await PhotoService.library(db, current_user.id)
    return LibraryResponse(photos=[
        PhotoItem(
            id=photo.id,
            originalFilename=photo.original_filename,
            fileUrl=storage.to_cdn_url(photo.file_url),
            fileSize=photo.file_size,
            uploadedAt=photo.uploaded_at,
        )
        for photo in photos
    ])


@router.delete("/{photo_id}")
async def delete_photo(
    photo_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: B2Client = Depends(get_b2_client),
):
    """Delete a photo and every image generated from it."""
    await PhotoService.delete(db, storage, current_user.id, photo_id)
    return {"success": True, "message": "Photo deleted successfully"}

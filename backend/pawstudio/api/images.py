"""
Image endpoints: generation, upload, download, history and deletion.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.auth.dependencies import get_current_user
from pawstudio.database import get_db
from pawstudio.errors import PawStudioError
from pawstudio.models.user import User
from pawstudio.services.generation_service import GenerationService, get_generation_service
from pawstudio.services.image_service import ImageService
from pawstudio.services.scene_service import SceneService
from pawstudio.storage.b2_client import B2Client, get_b2_client

router = APIRouter()
logger = logging.getLogger(__name__)


class ProcessImageRequest(BaseModel):
    imageUrl: str = Field(..., min_length=1)
    filterId: int


class ProcessImageResponse(BaseModel):
    success: bool
    processedUrl: str
    creditsRemaining: int
    imageId: int
    message: str


class UploadResponse(BaseModel):
    success: bool
    url: str
    imageId: int
    photoId: int
    message: str


class HistoryItem(BaseModel):
    id: int
    originalUrl: Optional[str] = None
    processedUrl: Optional[str] = None
    filterId: Optional[str] = None
    filterName: Optional[str] = None
    status: str
    creditsUsed: int
    errorMessage: Optional[str] = None
    createdAt: datetime
    processedAt: Optional[datetime] = None


class HistoryResponse(BaseModel):
    success: bool = True
    images: List[HistoryItem]
    total: int


class DeleteResponse(BaseModel):
    success: bool
    message: str


@router.post("/process", response_model=ProcessImageResponse)
async def process_image(
    request: ProcessImageRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    generation: GenerationService = Depends(get_generation_service),
):
    """
    Apply a scene to an image.

    Requires an active session. Debits the scene's credit cost unless the
    user is in trial mode.
    """
    user_id = current_user.id
    try:
        result = await generation.process_image(db, current_user, request.imageUrl, request.filterId)
    except PawStudioError:
        raise
    except Exception as e:
        logger.error(
            f"Unexpected error processing image: {str(e)}",
            extra={
                "event": "process_image_failed",
                "user_id": user_id,
                "scene_id": request.filterId,
                "error": str(e),
            },
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process image",
        )

    return ProcessImageResponse(
        success=True,
        processedUrl=result.processed_url,
        creditsRemaining=result.credits_remaining,
        imageId=result.image_id,
        message="Image processed successfully",
    )


@router.post("/upload", response_model=UploadResponse)
async def upload_image(
    image: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: B2Client = Depends(get_b2_client),
):
    """Upload an original photo (multipart field `image`, image/*, at most 25MB)."""
    data = await ImageService.read_upload(image)
    result = await ImageService.upload(
        db,
        storage,
        user_id=current_user.id,
        data=data,
        filename=image.filename,
        content_type=image.content_type,
    )
    return UploadResponse(
        success=True,
        url=result.url,
        imageId=result.image_id,
        photoId=result.photo_id,
        message="Image uploaded successfully",
    )


@router.get("/history", response_model=HistoryResponse)
async def image_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: B2Client = Depends(get_b2_client),
):
    """The user's images, newest first, with storage URLs served from the CDN."""
    images = await ImageService.history(db, current_user.id, limit=limit, offset=offset)
    scene_names = {str(scene.id): scene.name for scene in await SceneService.list_all(db)}

    items = [
        HistoryItem(
            id=image.id,
            originalUrl=storage.to_cdn_url(image.original_url),
            processedUrl=storage.to_cdn_url(image.processed_url),
            filterId=image.filter_type,
            filterName=scene_names.get(image.filter_type, image.filter_type),
            status=image.processing_status,
            creditsUsed=image.credits_used,
            errorMessage=image.error_message,
            createdAt=image.created_at,
            processedAt=image.processed_at,
        )
        for image in images
    ]
    return HistoryResponse(images=items, total=len(items))


@router.get("/download")
async def download_image(
    url: str = Query(..., min_length=1),
    filename: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    storage: B2Client = Depends(get_b2_client),
):
    """Serve one of the user's stored images as a file attachment."""
    result = await ImageService.download(storage, current_user.id, url, filename)
    return Response(
        content=result.content,
        media_type=result.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "Cache-Control": "private, max-age=3600",
        },
    )


@router.delete("/{image_id}", response_model=DeleteResponse)
async def delete_image(
    image_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: B2Client = Depends(get_b2_client),
):
    await ImageService.delete(db, storage, current_user.id, image_id)
    return DeleteResponse(success=True, message="Image deleted successfully")

"""
Uploads, downloads, image history and image deletion.
"""
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.config import settings
from pawstudio.errors import NotFoundError, ValidationError
from pawstudio.models.image import Image, ProcessingStatus
from pawstudio.models.photo import Photo
from pawstudio.storage.b2_client import B2Client

logger = logging.getLogger(__name__)

# filter_type of images created by a bare upload
UNPROCESSED_FILTER = "none"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class UploadResult:
    url: str
    image_id: int
    photo_id: int


@dataclass
class DownloadResult:
    content: bytes
    content_type: str
    filename: str


class ImageService:
    """User-facing image operations."""

    @staticmethod
    def validate_upload(content_type: str, size: int, max_bytes: Optional[int] = None) -> None:
        """
        Raises:
            ValidationError: If the file is not an image or exceeds the size limit
        """
        max_bytes = max_bytes or settings.max_upload_bytes
        if not content_type or not content_type.startswith("image/"):
            raise ValidationError("File must be an image")
        if size > max_bytes:
            raise ValidationError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")

    @staticmethod
    async def read_upload(upload, max_bytes: Optional[int] = None) -> bytes:
        """
        Read a multipart upload without buffering more than the size limit.

        Raises:
            ValidationError: If the file is not an image or exceeds the size limit
        """
        max_bytes = max_bytes or settings.max_upload_bytes
        ImageService.validate_upload(upload.content_type, upload.size or 0, max_bytes)
        data = await upload.read(max_bytes + 1)
        ImageService.validate_upload(upload.content_type, len(data), max_bytes)
        return data

    @staticmethod
    async def upload(
        db: AsyncSession,
        storage: B2Client,
        user_id: str,
        data: bytes,
        filename: str,
        content_type: str,
    ) -> UploadResult:
        """
        Store an uploaded original and register it in the library.

        Creates a Photo and a pending Image pointing at the stored file.
        """
        ImageService.validate_upload(content_type, len(data))

        extension = os.path.splitext(filename or "")[1].lstrip(".").lower() or "jpg"
        file_name = storage.generate_file_name(user_id, "uploads", extension)
        url = await storage.upload_bytes(data, file_name, content_type)

        photo = Photo(
            user_id=user_id,
            original_filename=filename,
            file_url=url,
            file_size=len(data),
        )
        db.add(photo)
        await db.flush()

        image = Image(
            user_id=user_id,
            photo_id=photo.id,
            original_url=url,
            filter_type=UNPROCESSED_FILTER,
            processing_status=ProcessingStatus.PENDING.value,
        )
        db.add(image)
        await db.commit()

        logger.info(f"Upload stored for user {user_id}: {file_name}", extra={"user_id": user_id, "size": len(data)})
        return UploadResult(url=url, image_id=image.id, photo_id=photo.id)

    @staticmethod
    async def history(db: AsyncSession, user_id: str, limit: int = 50, offset: int = 0) -> List[Image]:
        """User's images, newest first."""
        result = await db.execute(
            select(Image)
            .where(Image.user_id == user_id)
            .order_by(Image.created_at.desc(), Image.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def delete(db: AsyncSession, storage: B2Client, user_id: str, image_id: int) -> None:
        """
        Delete an image and its stored files.

        The processed file is always removed. The original is removed only
        when no other image or photo still points at it. Storage failures
        are logged and the row is deleted regardless.

        Raises:
            NotFoundError: If the image does not exist or belongs to another user
        """
        result = await db.execute(
            select(Image).where(Image.id == image_id).where(Image.user_id == user_id)
        )
        image = result.scalar_one_or_none()
        if image is None:
            raise NotFoundError("Image not found or unauthorized")

        files = []
        if image.processed_url:
            files.append(storage.extract_file_name(image.processed_url))

        if image.original_url:
            other_image = await db.execute(
                select(Image.id)
                .where(Image.original_url == image.original_url)
                .where(Image.id != image_id)
                .limit(1)
            )
            photo = await db.execute(
                select(Photo.id).where(Photo.file_url == image.original_url).limit(1)
            )
            if other_image.scalar_one_or_none() is None and photo.scalar_one_or_none() is None:
                files.append(storage.extract_file_name(image.original_url))
            else:
                logger.info(f"Original of image {image_id} still referenced, keeping it")

        await storage.delete_files(files)

        await db.execute(delete(Image).where(Image.id == image_id).where(Image.user_id == user_id))
        await db.commit()
        logger.info(f"Image deleted: {image_id}", extra={"user_id": user_id})

    @staticmethod
    async def download(storage: B2Client, user_id: str, url: str, filename: Optional[str] = None) -> DownloadResult:
        """
        Fetch one of the user's stored files for saving to disk.

        Only files under the user's own storage prefix can be fetched, and
        they are always read from the CDN rather than the given host.

        Raises:
            ValidationError: URL is not a stored file
            NotFoundError: File belongs to another user or does not exist
        """
        file_name = storage.extract_file_name(url)
        if not file_name or ".." in file_name.split("/"):
            raise ValidationError("Invalid image URL")
        if not file_name.startswith(f"{user_id}/"):
            raise NotFoundError("Image not found")

        content, content_type = await storage.download(file_name)
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", filename or "") or f"pawstudio-{int(time.time() * 1000)}.jpg"
        return DownloadResult(content=content, content_type=content_type, filename=safe_name)

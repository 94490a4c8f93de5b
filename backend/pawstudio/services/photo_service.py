"""
Photo library.
"""
import logging
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.errors import NotFoundError
from pawstudio.models.image import Image
from pawstudio.models.photo import Photo
from pawstudio.storage.b2_client import B2Client

logger = logging.getLogger(__name__)


class PhotoService:

    @staticmethod
    async def library(db: AsyncSession, user_id: str) -> List[Photo]:
        result = await db.execute(
            select(Photo)
            .where(Photo.user_id == user_id)
            .order_by(Photo.uploaded_at.desc(), Photo.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def delete(db: AsyncSession, storage: B2Client, user_id: str, photo_id: int) -> None:
        """
        Delete a photo together with the images generated from it,
        and their stored files.

        Raises:
            NotFoundError: If the photo does not exist or belongs to another user
        """
        result = await db.execute(
            select(Photo).where(Photo.id == photo_id).where(Photo.user_id == user_id)
        )
        photo = result.scalar_one_or_none()
        if photo is None:
            raise NotFoundError("Photo not found or unauthorized")

        images = await db.execute(
            select(Image.processed_url).where(Image.photo_id == photo_id)
        )
        files = [storage.extract_file_name(photo.file_url)]
        files.extend(storage.extract_file_name(url) for url in images.scalars().all() if url)
        await storage.delete_files(files)

        await db.execute(delete(Image).where(Image.photo_id == photo_id))
        await db.execute(delete(Photo).where(Photo.id == photo_id))
        await db.commit()
        logger.info(f"Photo deleted: {photo_id}", extra={"user_id": user_id})

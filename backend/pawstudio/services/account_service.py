"""
Account operations: profile statistics, trial completion and deletion.
"""
import logging
from typing import Any, Dict

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.errors import ValidationError
from pawstudio.models.auth_session import AuthSession
from pawstudio.models.credit_transaction import CreditTransaction
from pawstudio.models.image import Image, ProcessingStatus
from pawstudio.models.photo import Photo
from pawstudio.models.user import User
from pawstudio.storage.b2_client import B2Client

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "DELETE MY ACCOUNT"


class AccountService:

    @staticmethod
    async def image_statistics(db: AsyncSession, user_id: str) -> Dict[str, int]:
        result = await db.execute(
            select(Image.processing_status, func.count(Image.id))
            .where(Image.user_id == user_id)
            .group_by(Image.processing_status)
        )
        counts = dict(result.all())

        processed = counts.get(ProcessingStatus.COMPLETED.value, 0)
        pending = counts.get(ProcessingStatus.PENDING.value, 0) + counts.get(ProcessingStatus.PROCESSING.value, 0)
        return {
            "totalProcessed": processed,
            "totalPending": pending,
            "totalImages": processed + pending,
        }

    @staticmethod
    async def complete_trial(db: AsyncSession, user: User) -> None:
        """End the free trial. Idempotent."""
        if user.trial_mode:
            user.trial_mode = False
            await db.commit()
            logger.info(f"Trial completed for user {user.id}", extra={"user_id": user.id})

    @staticmethod
    async def deletion_summary(db: AsyncSession, user: User, confirmation: str) -> Dict[str, Any]:
        """
        Confirmation step before deletion.

        Raises:
            ValidationError: If the confirmation phrase does not match
        """
        if confirmation != DELETE_CONFIRMATION:
            raise ValidationError(f'Invalid confirmation. Please type "{DELETE_CONFIRMATION}" to confirm.')

        photos = await db.execute(select(func.count(Photo.id)).where(Photo.user_id == user.id))
        images = await db.execute(select(func.count(Image.id)).where(Image.user_id == user.id))
        return {
            "email": user.email,
            "name": user.name,
            "credits": user.credits,
            "photosToDelete": photos.scalar_one(),
            "generatedImagesToDelete": images.scalar_one(),
            "memberSince": user.created_at,
        }

    @staticmethod
    async def delete_account(db: AsyncSession, storage: B2Client, user_id: str) -> int:
        """
        Delete all stored files of a user, then the user and every owned row.

        Storage failures are logged and do not block the database deletion.

        Returns:
            Number of distinct files scheduled for deletion
        """
        photo_urls = await db.execute(select(Photo.file_url).where(Photo.user_id == user_id))
        image_urls = await db.execute(
            select(Image.original_url, Image.processed_url).where(Image.user_id == user_id)
        )

        urls = list(photo_urls.scalars().all())
        for original_url, processed_url in image_urls.all():
            urls.extend([original_url, processed_url])

        file_names = list(dict.fromkeys(
            name for name in (storage.extract_file_name(url) for url in urls if url) if name
        ))
        logger.info(f"Found {len(file_names)} files to delete for user {user_id}")
        await storage.delete_files(file_names)

        for model in (Image, Photo, CreditTransaction, AuthSession):
            await db.execute(delete(model).where(model.user_id == user_id))
        await db.execute(delete(User).where(User.id == user_id))
        await db.commit()

        logger.info(f"Account deleted: {user_id}", extra={"user_id": user_id})
        return len(file_names)

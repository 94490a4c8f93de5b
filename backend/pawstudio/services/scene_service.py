"""
Scene catalogue: public listing, admin CRUD and reference images.
"""
import logging
import os
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.errors import NotFoundError, ValidationError
from pawstudio.models.image import Image
from pawstudio.models.scene import Scene
from pawstudio.storage.b2_client import B2Client

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "description",
    "prompt",
    "category",
    "credit_cost",
    "preview_image",
    "is_active",
    "display_order",
)


class SceneService:
    """Read and manage scenes."""

    @staticmethod
    async def list_active(db: AsyncSession) -> List[Scene]:
        result = await db.execute(
            select(Scene)
            .where(Scene.is_active.is_(True))
            .order_by(Scene.display_order.asc(), Scene.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_all(db: AsyncSession) -> List[Scene]:
        result = await db.execute(
            select(Scene).order_by(Scene.display_order.asc(), Scene.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get(db: AsyncSession, scene_id: int) -> Scene:
        scene = await db.get(Scene, scene_id)
        if scene is None:
            raise NotFoundError("Scene not found")
        return scene

    @staticmethod
    async def get_active(db: AsyncSession, scene_id: int) -> Scene:
        """
        Resolve a scene for generation.

        Raises:
            NotFoundError: If the scene does not exist or is inactive
        """
        scene = await db.get(Scene, scene_id)
        if scene is None or not scene.is_active:
            raise NotFoundError("Scene not found or inactive")
        return scene

    @staticmethod
    async def create(db: AsyncSession, data: dict) -> Scene:
        if not data.get("name") or not data.get("prompt"):
            raise ValidationError("Name and prompt are required")
        if data.get("credit_cost", 1) is not None and data.get("credit_cost", 1) < 0:
            raise ValidationError("Credit cost cannot be negative")

        scene = Scene(**{key: value for key, value in data.items() if key in EDITABLE_FIELDS and value is not None})
        # Equal timestamps mark a scene that was never edited
        scene.created_at = scene.updated_at = datetime.utcnow()
        db.add(scene)
        await db.commit()
        await db.refresh(scene)
        logger.info(f"Scene created: {scene.id} ({scene.name})")
        return scene

    @staticmethod
    async def update(db: AsyncSession, scene_id: int, data: dict) -> Scene:
        scene = await SceneService.get(db, scene_id)
        if data.get("credit_cost") is not None and data["credit_cost"] < 0:
            raise ValidationError("Credit cost cannot be negative")

        for key, value in data.items():
            if key in EDITABLE_FIELDS and value is not None:
                setattr(scene, key, value)

        await db.commit()
        await db.refresh(scene)
        return scene

    @staticmethod
    async def delete(db: AsyncSession, scene_id: int) -> bool:
        """
        Delete a scene, or deactivate it when images were generated with it.

        Returns:
            True if hard-deleted, False if deactivated
        """
        scene = await SceneService.get(db, scene_id)

        used = await db.execute(
            select(func.count(Image.id)).where(Image.filter_type == str(scene.id))
        )
        if used.scalar_one() > 0:
            scene.is_active = False
            await db.commit()
            logger.info(f"Scene {scene_id} is in use, deactivated instead of deleted")
            return False

        await db.delete(scene)
        await db.commit()
        logger.info(f"Scene deleted: {scene_id}")
        return True

    @staticmethod
    async def upload_image(
        db: AsyncSession,
        storage: B2Client,
        data: bytes,
        filename: Optional[str],
        content_type: str,
        scene_id: Optional[int] = None,
    ) -> str:
        """
        Store a scene reference image under admin/scenes/ and return its URL.
        When scene_id is given the URL becomes that scene's preview image.

        Raises:
            NotFoundError: Unknown scene_id
            ExternalServiceError: Storage upload failed
        """
        scene = await SceneService.get(db, scene_id) if scene_id is not None else None

        extension = os.path.splitext(filename or "")[1].lstrip(".").lower() or "jpg"
        file_name = storage.generate_file_name("admin", "scenes", extension)
        url = await storage.upload_bytes(data, file_name, content_type)

        if scene is not None:
            scene.preview_image = url
            await db.commit()
        logger.info(f"Scene image uploaded: {file_name}", extra={"scene_id": scene_id, "size": len(data)})
        return url

"""
Image generation orchestration.

Runs one generation inside a single request:
1. Resolve the scene (must be active)
2. Credit gate (balance covers cost, or trial mode)
3. Download the source image
4. Create the Image row (pending), submit to FLUX and poll
5. Persist the result to storage
6. One DB transaction: complete the Image, debit + ledger row, bump usage_count

Any failure once the Image row exists marks it failed. An Image only
reaches completed after its artifact is stored.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.errors import (
    InsufficientCreditsError,
    PawStudioError,
    ValidationError,
)
from pawstudio.models.image import Image, ProcessingStatus
from pawstudio.models.photo import Photo
from pawstudio.models.scene import Scene
from pawstudio.models.user import User
from pawstudio.services.credit_service import CreditService
from pawstudio.services.flux_client import FluxClient, get_flux_client
from pawstudio.services.scene_service import SceneService
from pawstudio.storage.b2_client import B2Client, get_b2_client
from pawstudio.utils.logging import (
    log_generation_started,
    log_generation_completed,
    log_generation_failed,
)
from pawstudio.utils.metrics import (
    generations_in_progress,
    generations_total,
    generation_duration_seconds,
)

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    image_id: int
    processed_url: str
    credits_remaining: int
    credits_used: int


class GenerationService:
    """Credit-gated FLUX generation with storage and ledger bookkeeping."""

    def __init__(
        self,
        flux: FluxClient,
        storage: B2Client,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.flux = flux
        self.storage = storage
        self._transport = transport

    async def fetch_source_image(self, image_url: str) -> Tuple[bytes, str]:
        """
        Download the source image.

        Returns:
            (bytes, content type)

        Raises:
            ValidationError: If the image cannot be downloaded
        """
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30, follow_redirects=True) as client:
                response = await client.get(image_url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Failed to download original image {image_url}: {e}")
            raise ValidationError("Failed to download original image") from e

        if response.status_code >= 400:
            raise ValidationError("Failed to download original image")

        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        if not content_type.startswith("image/"):
            content_type = "image/jpeg"
        return response.content, content_type

    async def process_image(
        self,
        db: AsyncSession,
        user: User,
        image_url: str,
        scene_id: int,
    ) -> GenerationResult:
        """
        Run a full generation for the user.

        Args:
            db: Database session
            user: Authenticated user
            image_url: Source image URL
            scene_id: Scene to apply

        Returns:
            GenerationResult

        Raises:
            NotFoundError: Scene missing or inactive
            InsufficientCreditsError: Gate failed, or the balance was spent concurrently
            ValidationError: Source image could not be downloaded
            ExternalServiceError and subclasses: FLUX or storage failure
            GenerationTimeoutError: FLUX never reached a terminal status
        """
        user_id = user.id
        trial_mode = bool(user.trial_mode)

        scene = await SceneService.get_active(db, scene_id)
        cost = scene.credit_cost
        prompt = scene.prompt
        scene_name = scene.name

        CreditService.ensure_can_generate(user, cost)

        source_bytes, mime_type = await self.fetch_source_image(image_url)

        image = Image(
            user_id=user_id,
            photo_id=await self._find_photo_id(db, user_id, image_url),
            original_url=image_url,
            filter_type=str(scene_id),
            processing_status=ProcessingStatus.PENDING.value,
        )
        db.add(image)
        await db.commit()
        await db.refresh(image)
        image_id = image.id

        start_time = time.time()
        generations_in_progress.inc()
        log_generation_started(logger, image_id=image_id, user_id=user_id, scene_id=scene_id, trial_mode=trial_mode)

        try:
            image.processing_status = ProcessingStatus.PROCESSING.value
            await db.commit()

            generated = await self.flux.generate(source_bytes, prompt, mime_type)

            file_name = self.storage.generate_file_name(user_id, "generated")
            processed_url = await self.storage.upload_bytes(generated, file_name, "image/jpeg")

            credits_used = 0 if trial_mode else cost

            image.processing_status = ProcessingStatus.COMPLETED.value
            image.processed_url = processed_url
            image.processed_at = datetime.utcnow()
            image.credits_used = credits_used

            if credits_used > 0:
                debited = await CreditService.debit(
                    db,
                    user_id,
                    credits_used,
                    description=f"Applied {scene_name} scene",
                    commit=False,
                )
                if not debited:
                    raise InsufficientCreditsError()

            await db.execute(
                update(Scene)
                .where(Scene.id == scene_id)
                .values(usage_count=Scene.usage_count + 1)
            )
            await db.commit()

        except PawStudioError as e:
            await self._mark_failed(db, image_id, e.message)
            self._record_failure(image_id, user_id, e.message, e.code, start_time)
            raise
        except Exception as e:
            await self._mark_failed(db, image_id, str(e))
            self._record_failure(image_id, user_id, str(e), None, start_time)
            raise
        finally:
            generations_in_progress.dec()

        duration = time.time() - start_time
        generations_total.labels(status="completed").inc()
        generation_duration_seconds.labels(status="completed").observe(duration)
        log_generation_completed(
            logger,
            image_id=image_id,
            user_id=user_id,
            duration_ms=duration * 1000,
            credits_used=credits_used,
        )

        credits_remaining = await CreditService.get_balance(db, user_id)
        if credits_used > 0:
            CreditService.record_debit(user_id, credits_used, credits_remaining)

        return GenerationResult(
            image_id=image_id,
            processed_url=processed_url,
            credits_remaining=credits_remaining,
            credits_used=credits_used,
        )

    @staticmethod
    async def _find_photo_id(db: AsyncSession, user_id: str, image_url: str) -> Optional[int]:
        result = await db.execute(
            select(Photo.id)
            .where(Photo.user_id == user_id)
            .where(Photo.file_url == image_url)
            .order_by(Photo.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _mark_failed(db: AsyncSession, image_id: int, error_message: str) -> None:
        # Discard the half-written completion (and any debit) first
        await db.rollback()
        await db.execute(
            update(Image)
            .where(Image.id == image_id)
            .values(
                processing_status=ProcessingStatus.FAILED.value,
                error_message=error_message[:1000],
                updated_at=datetime.utcnow(),
            )
        )
        await db.commit()

    @staticmethod
    def _record_failure(image_id: int, user_id: str, error: str, code: Optional[str], start_time: float) -> None:
        duration = time.time() - start_time
        generations_total.labels(status="failed").inc()
        generation_duration_seconds.labels(status="failed").observe(duration)
        log_generation_failed(
            logger,
            image_id=image_id,
            user_id=user_id,
            error=error,
            error_code=code,
            duration_ms=duration * 1000,
        )


def get_generation_service() -> GenerationService:
    """FastAPI dependency wiring the shared FLUX and storage clients."""
    return GenerationService(flux=get_flux_client(), storage=get_b2_client())

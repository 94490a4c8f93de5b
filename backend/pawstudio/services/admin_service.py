"""
Admin operations over users, plus dashboard statistics.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.errors import AuthorizationError, NotFoundError, ValidationError
from pawstudio.models.credit_transaction import CreditTransaction, TransactionType
from pawstudio.models.image import Image, ProcessingStatus
from pawstudio.models.scene import Scene
from pawstudio.models.user import User, UserRole
from pawstudio.services.account_service import AccountService
from pawstudio.services.credit_service import CreditService
from pawstudio.storage.b2_client import B2Client

logger = logging.getLogger(__name__)

VALID_ROLES = {role.value for role in UserRole}

ACTIVITY_TYPES = (
    "user_registered",
    "image_processed",
    "credits_purchased",
    "credits_used",
    "scene_created",
    "scene_updated",
)


class AdminService:

    @staticmethod
    async def list_users(db: AsyncSession, limit: int = 100, offset: int = 0) -> List[User]:
        result = await db.execute(
            select(User).order_by(User.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def update_user(
        db: AsyncSession,
        admin: User,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        credits: Optional[int] = None,
        role: Optional[str] = None,
    ) -> User:
        """
        Edit a user. A credit change is recorded in the ledger as a bonus
        row carrying the signed difference.

        Raises:
            NotFoundError: Unknown user
            ValidationError: Negative credits, unknown role, or email already taken
        """
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        if role is not None and role not in VALID_ROLES:
            raise ValidationError(f"Invalid role: {role}")
        if credits is not None and credits < 0:
            raise ValidationError("Credits cannot be negative")

        if email is not None and email != user.email:
            taken = await db.execute(select(User.id).where(User.email == email).where(User.id != user_id))
            if taken.scalar_one_or_none() is not None:
                raise ValidationError("Email already in use")
            user.email = email
        if name is not None:
            user.name = name
        if role is not None:
            user.role = role
        if credits is not None:
            await CreditService.set_balance(db, user, credits, description=f"Admin adjustment by {admin.email}")

        await db.commit()
        await db.refresh(user)
        logger.info(f"User {user_id} updated by admin {admin.id}")
        return user

    @staticmethod
    async def delete_user(db: AsyncSession, storage: B2Client, admin: User, user_id: str) -> None:
        """
        Raises:
            AuthorizationError: Admin attempting to delete their own account
            NotFoundError: Unknown user
        """
        if user_id == admin.id:
            raise AuthorizationError("Cannot delete your own account")

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        await AccountService.delete_account(db, storage, user_id)
        logger.info(f"User {user_id} deleted by admin {admin.id}")

    @staticmethod
    async def stats(db: AsyncSession) -> Dict[str, Any]:
        """Totals and 30-day counts for the dashboard."""
        since = datetime.utcnow() - timedelta(days=30)

        users = (await db.execute(
            select(
                func.count(User.id),
                func.count(case((User.created_at > since, 1))),
            )
        )).one()

        images = (await db.execute(
            select(
                func.count(Image.id),
                func.count(case((Image.processed_at > since, 1))),
            ).where(Image.processing_status == ProcessingStatus.COMPLETED.value)
        )).one()

        spent = (await db.execute(
            select(
                func.coalesce(func.sum(func.abs(CreditTransaction.amount)), 0),
                func.coalesce(func.sum(case((CreditTransaction.created_at > since, func.abs(CreditTransaction.amount)), else_=0)), 0),
            ).where(CreditTransaction.transaction_type == TransactionType.USAGE.value)
        )).one()

        purchased = (await db.execute(
            select(
                func.coalesce(func.sum(CreditTransaction.amount), 0),
                func.coalesce(func.sum(case((CreditTransaction.created_at > since, CreditTransaction.amount), else_=0)), 0),
                func.count(CreditTransaction.id),
                func.count(case((CreditTransaction.created_at > since, 1))),
            ).where(CreditTransaction.transaction_type == TransactionType.PURCHASE.value)
        )).one()

        scenes = (await db.execute(
            select(
                func.count(Scene.id),
                func.count(case((Scene.is_active.is_(True), 1))),
            )
        )).one()

        return {
            "totalUsers": users[0],
            "newUsersThisMonth": users[1],
            "totalImages": images[0],
            "imagesThisMonth": images[1],
            "totalCreditsSpent": int(spent[0]),
            "creditsSpentThisMonth": int(spent[1]),
            "totalScenes": scenes[0],
            "activeScenes": scenes[1],
            "totalCreditsPurchased": int(purchased[0]),
            "creditsPurchasedThisMonth": int(purchased[1]),
            "totalPurchases": purchased[2],
            "purchasesThisMonth": purchased[3],
        }

    @staticmethod
    async def activity(
        db: AsyncSession,
        event_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Recent platform events merged from users, images, the ledger and
        scenes, newest first.

        Each source contributes at most offset + limit rows, which is enough
        to fill the requested page after merging.

        Raises:
            ValidationError: Unknown event type
        """
        if event_type is not None and event_type not in ACTIVITY_TYPES:
            raise ValidationError(f"Invalid activity type: {event_type}")

        def wanted(*types: str) -> bool:
            return event_type is None or event_type in types

        window = offset + limit
        events: List[Dict[str, Any]] = []
        total = 0

        if wanted("user_registered"):
            total += await _count(db, select(func.count(User.id)))
            users = await db.execute(select(User).order_by(User.created_at.desc()).limit(window))
            for user in users.scalars():
                events.append(_activity_event(
                    f"user_{user.id}", "user_registered", "New user registered", user,
                    {"credits": user.credits, "role": user.role},
                    user.created_at,
                ))

        if wanted("image_processed"):
            completed = Image.processing_status == ProcessingStatus.COMPLETED.value
            happened_at = func.coalesce(Image.processed_at, Image.created_at)
            total += await _count(db, select(func.count(Image.id)).where(completed))
            rows = await db.execute(
                select(Image, User)
                .outerjoin(User, Image.user_id == User.id)
                .where(completed)
                .order_by(happened_at.desc())
                .limit(window)
            )
            for image, user in rows.all():
                events.append(_activity_event(
                    f"img_{image.id}", "image_processed", f"Image processed with {image.filter_type}", user,
                    {
                        "filter_type": image.filter_type,
                        "credits_used": image.credits_used,
                        "processing_status": image.processing_status,
                    },
                    image.processed_at or image.created_at,
                ))

        for txn_type, activity_type in (
            (TransactionType.PURCHASE.value, "credits_purchased"),
            (TransactionType.USAGE.value, "credits_used"),
        ):
            if not wanted(activity_type):
                continue
            of_type = CreditTransaction.transaction_type == txn_type
            total += await _count(db, select(func.count(CreditTransaction.id)).where(of_type))
            rows = await db.execute(
                select(CreditTransaction, User)
                .outerjoin(User, CreditTransaction.user_id == User.id)
                .where(of_type)
                .order_by(CreditTransaction.created_at.desc())
                .limit(window)
            )
            for txn, user in rows.all():
                amount = abs(txn.amount)
                if activity_type == "credits_purchased":
                    description = f"Purchased {amount} credits"
                    metadata = {
                        "amount": amount,
                        "description": txn.description,
                        "external_payment_ref": txn.external_payment_ref,
                    }
                else:
                    description = f"Used {amount} credit(s)"
                    metadata = {"amount": amount, "description": txn.description}
                events.append(_activity_event(
                    f"txn_{txn.id}", activity_type, description, user, metadata, txn.created_at,
                ))

        if wanted("scene_created", "scene_updated"):
            query = select(Scene)
            if event_type == "scene_created":
                query = query.where(Scene.updated_at == Scene.created_at)
            elif event_type == "scene_updated":
                query = query.where(Scene.updated_at != Scene.created_at)
            total += await _count(db, query.with_only_columns(func.count(Scene.id)))
            scenes = await db.execute(query.order_by(Scene.updated_at.desc()).limit(window))
            for scene in scenes.scalars():
                created = scene.updated_at == scene.created_at
                events.append(_activity_event(
                    f"scene_{scene.id}",
                    "scene_created" if created else "scene_updated",
                    f'Scene "{scene.name}" {"created" if created else "updated"}',
                    None,
                    {
                        "name": scene.name,
                        "category": scene.category,
                        "active": scene.is_active,
                        "usage_count": scene.usage_count,
                    },
                    max(scene.created_at, scene.updated_at),
                ))

        events.sort(key=lambda event: event["created_at"], reverse=True)
        return {
            "activities": events[offset:offset + limit],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "hasMore": offset + limit < total,
            },
        }


async def _count(db: AsyncSession, query) -> int:
    return (await db.execute(query)).scalar_one()


def _activity_event(
    event_id: str,
    event_type: str,
    description: str,
    user: Optional[User],
    metadata: Dict[str, Any],
    created_at: datetime,
) -> Dict[str, Any]:
    return {
        "id": event_id,
        "type": event_type,
        "description": description,
        "user_email": user.email if user else None,
        "user_name": user.name if user else None,
        "metadata": metadata,
        "created_at": created_at,
    }

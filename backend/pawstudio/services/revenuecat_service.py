"""
RevenueCat webhook handling for mobile in-app purchases.

Store products map to fixed credit amounts. Purchases are granted once per
store transaction id; other lifecycle events are acknowledged only.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.config import settings
from pawstudio.errors import AuthenticationError, NotFoundError, PawStudioError, ValidationError
from pawstudio.models.user import User
from pawstudio.services.credit_service import CreditService

logger = logging.getLogger(__name__)

PRODUCT_CREDIT_MAPPING = {
    "starter": 5,
    "premium": 20,
    "ultimate": 50,
}

CREDIT_GRANTING_EVENTS = {
    "INITIAL_PURCHASE",
    "NON_RENEWING_PURCHASE",
    "RENEWAL",
}


class RevenueCatService:

    @staticmethod
    def verify_authorization(authorization: Optional[str]) -> None:
        """
        Raises:
            PawStudioError: Webhook secret not configured (500)
            AuthenticationError: Header does not carry the shared secret
        """
        expected = settings.revenuecat_webhook_secret
        if not expected:
            logger.error("REVENUECAT_WEBHOOK_SECRET not configured")
            raise PawStudioError("Webhook secret not configured")
        if authorization != f"Bearer {expected}":
            logger.error("Invalid RevenueCat webhook authorization")
            raise AuthenticationError()

    @staticmethod
    async def handle_event(db: AsyncSession, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process one webhook payload of the form {"event": {...}, "api_version": ...}.

        Raises:
            ValidationError: Malformed payload, missing user id or unknown product
            NotFoundError: User does not exist
        """
        if not isinstance(payload, dict):
            raise ValidationError("Invalid payload")
        event = payload.get("event") or {}
        if not isinstance(event, dict):
            raise ValidationError("Invalid payload")
        event_type = event.get("type")
        logger.info(
            f"RevenueCat webhook received: {event_type}",
            extra={
                "event_type": event_type,
                "user_id": event.get("app_user_id"),
                "product_id": event.get("product_id"),
                "environment": event.get("environment"),
            },
        )

        if event_type == "TEST":
            return {"received": True, "message": "Test webhook received successfully"}

        if event_type not in CREDIT_GRANTING_EVENTS:
            logger.info(f"Event type does not grant credits, skipping: {event_type}")
            return {"received": True, "event_type": event_type}

        if event.get("environment") == "SANDBOX" and settings.environment == "production":
            logger.warning("Skipping sandbox transaction in production")
            return {"received": True}

        user_id = event.get("app_user_id")
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("Missing user ID")

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        product_id = event.get("product_id")
        credits_to_add = PRODUCT_CREDIT_MAPPING.get(product_id) if isinstance(product_id, str) else None
        if not credits_to_add:
            raise ValidationError("Unknown product")

        transaction_id = event.get("transaction_id") or event.get("original_transaction_id")
        if not transaction_id or not isinstance(transaction_id, str):
            raise ValidationError("Missing transaction ID")

        granted = await CreditService.grant_purchase(
            db,
            user_id=user_id,
            amount=credits_to_add,
            external_payment_ref=transaction_id,
            description=f"RevenueCat {event_type}: {product_id} ({credits_to_add} credits)",
        )
        if not granted:
            return {"received": True, "duplicate": True, "message": "Transaction already processed"}

        return {
            "success": True,
            "creditsAdded": credits_to_add,
            "newBalance": await CreditService.get_balance(db, user_id),
        }

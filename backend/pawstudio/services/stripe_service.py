"""
Stripe service for payment processing.
Handles payment intent creation for fixed credit packages and the
payment_intent.succeeded webhook.
"""
import stripe
import logging
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, asdict
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.config import settings
from pawstudio.errors import ExternalServiceError, ValidationError
from pawstudio.models.user import User
from pawstudio.services.credit_service import CreditService

logger = logging.getLogger(__name__)


@dataclass
class CreditPackage:
    """Represents a purchasable credit package."""
    id: str
    name: str
    credits: int
    price_cents: int  # Price in cents (e.g., 999 = $9.99)
    currency: str = "usd"
    popular: bool = False


# Available credit packages
CREDIT_PACKAGES: List[CreditPackage] = [
    CreditPackage(id="pack_5", name="5 Credits", credits=5, price_cents=99),
    CreditPackage(id="pack_10", name="10 Credits", credits=10, price_cents=199),
    CreditPackage(id="pack_25", name="25 Credits", credits=25, price_cents=399, popular=True),
    CreditPackage(id="pack_50", name="50 Credits", credits=50, price_cents=699),
    CreditPackage(id="pack_100", name="100 Credits", credits=100, price_cents=999),
]


class StripeService:
    """Service for Stripe payment operations."""

    def __init__(self):
        """Initialize Stripe with API key."""
        if settings.stripe_secret_key:
            stripe.api_key = settings.stripe_secret_key
            logger.info("Stripe initialized with secret key")
        else:
            logger.warning("Stripe secret key not configured")

    @staticmethod
    def _ensure_api_key() -> None:
        if not settings.stripe_secret_key:
            raise ExternalServiceError("Stripe is not configured")
        if stripe.api_key != settings.stripe_secret_key:
            stripe.api_key = settings.stripe_secret_key

    @staticmethod
    def get_packages() -> List[Dict[str, Any]]:
        return [
            {**asdict(package), "price_formatted": f"${package.price_cents / 100:.2f}"}
            for package in CREDIT_PACKAGES
        ]

    @staticmethod
    def get_package(package_id: str) -> Optional[CreditPackage]:
        for package in CREDIT_PACKAGES:
            if package.id == package_id:
                return package
        return None

    def create_payment_intent(self, user: User, package_id: str) -> Dict[str, Any]:
        """
        Create a Stripe Payment Intent for a credit package.

        Credits are granted later by the payment_intent.succeeded webhook,
        which reads them back from the metadata set here.

        Args:
            user: Purchasing user
            package_id: ID of the credit package

        Returns:
            Dict with clientSecret, paymentIntentId, amount and credits

        Raises:
            ValidationError: If the package does not exist
            ExternalServiceError: If Stripe is not configured or the API call fails
        """
        package = self.get_package(package_id)
        if package is None:
            raise ValidationError("Invalid package selected")

        self._ensure_api_key()

        try:
            payment_intent = stripe.PaymentIntent.create(
                amount=package.price_cents,
                currency=package.currency,
                metadata={
                    "userId": str(user.id),
                    "packageId": package.id,
                    "credits": str(package.credits),
                    "packageName": package.name,
                },
                description=f"PawStudio - {package.name}",
                receipt_email=user.email or None,
            )
        except stripe.error.StripeError as e:
            error_msg = f"Stripe API error: {str(e)}"
            logger.error(f"Stripe error creating payment intent: {error_msg}")
            raise ExternalServiceError("Failed to create payment intent") from e

        logger.info(
            f"Created payment intent {payment_intent.id} for user {user.id}, "
            f"package {package.id} ({package.credits} credits)"
        )
        return {
            "clientSecret": payment_intent.client_secret,
            "paymentIntentId": payment_intent.id,
            "amount": package.price_cents,
            "credits": package.credits,
        }

    @staticmethod
    def construct_event(payload: bytes, signature: str):
        """
        Verify a webhook signature and parse the event.

        Raises:
            ValidationError: Invalid payload or signature
            ExternalServiceError: Webhook secret not configured
        """
        if not settings.stripe_webhook_secret:
            raise ExternalServiceError("Stripe webhook secret not configured")
        if not signature:
            raise ValidationError("Missing Stripe signature")

        try:
            return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except ValueError as e:
            logger.error(f"Invalid payload: {e}")
            raise ValidationError("Invalid payload") from e
        except stripe.error.SignatureVerificationError as e:
            logger.error(f"Invalid signature: {e}")
            raise ValidationError("Invalid signature") from e

    @staticmethod
    async def handle_payment_succeeded(db: AsyncSession, payment_intent: Dict[str, Any]) -> Dict[str, Any]:
        """
        Grant the credits of a succeeded payment intent, once per intent id.

        Returns:
            Status dict for the webhook response
        """
        payment_intent_id = payment_intent.get("id")
        metadata = payment_intent.get("metadata") or {}
        user_id = metadata.get("userId")
        credits_amount = metadata.get("credits")
        package_name = metadata.get("packageName") or "credits"

        if not user_id or not credits_amount:
            logger.warning(
                f"Missing metadata in payment intent {payment_intent_id}: "
                f"userId={user_id}, credits={credits_amount}"
            )
            return {"status": "ignored", "reason": "missing_metadata"}

        try:
            credits_amount = int(credits_amount)
        except (ValueError, TypeError):
            logger.error(f"Invalid credits amount: {credits_amount}")
            return {"status": "error", "reason": "invalid_credits_amount"}

        user = await db.get(User, user_id)
        if user is None:
            logger.warning(f"User {user_id} not found for Stripe webhook")
            return {"status": "ignored", "reason": "user_not_found"}

        granted = await CreditService.grant_purchase(
            db,
            user_id=user_id,
            amount=credits_amount,
            external_payment_ref=payment_intent_id,
            description=f"Purchased {package_name}",
        )
        if not granted:
            return {"status": "already_processed", "payment_intent_id": payment_intent_id}

        return {
            "status": "success",
            "user_id": user_id,
            "credits_added": credits_amount,
        }


# Singleton instance
stripe_service = StripeService()

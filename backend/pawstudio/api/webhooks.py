"""
Webhook endpoints for external services.
Handles Stripe payment webhooks and RevenueCat in-app purchase events.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from pawstudio.database import get_db
from pawstudio.errors import ValidationError
from pawstudio.services.revenuecat_service import RevenueCatService
from pawstudio.services.stripe_service import stripe_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
):
    """
    Stripe webhook endpoint.

    Handles:
    - payment_intent.succeeded: grants the package credits

    Security:
    - Validates the Stripe signature
    - Idempotent per payment intent id (credit ledger external reference)

    Expected metadata format:
    {
        "userId": "<user_uuid>",
        "credits": "<integer>",
        "packageName": "<display name>"
    }
    """
    body = await request.body()
    event = stripe_service.construct_event(body, stripe_signature)

    if event["type"] == "payment_intent.succeeded":
        return await stripe_service.handle_payment_succeeded(db, event["data"]["object"])

    if event["type"] == "payment_intent.payment_failed":
        payment_intent = event["data"]["object"]
        logger.warning(f"Payment failed: {payment_intent.get('id')}")
        return {"status": "acknowledged", "event_type": event["type"]}

    logger.info(f"Unhandled Stripe event type: {event['type']}")
    return {"status": "ignored", "event_type": event["type"]}


@router.post("/revenuecat")
async def revenuecat_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    authorization: Optional[str] = Header(None),
):
    """RevenueCat webhook, authenticated with a shared Bearer secret."""
    RevenueCatService.verify_authorization(authorization)

    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError("Invalid payload") from e

    return await RevenueCatService.handle_event(db, payload)

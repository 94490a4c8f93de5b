"""
Credit balance, ledger, packages and Stripe payment intents.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.auth.dependencies import get_current_user
from pawstudio.database import get_db
from pawstudio.models.user import User
from pawstudio.services.credit_service import CreditService
from pawstudio.services.stripe_service import stripe_service

router = APIRouter()


class BalanceResponse(BaseModel):
    success: bool = True
    credits: int


class TransactionItem(BaseModel):
    id: str
    amount: int
    type: str
    description: Optional[str] = None
    createdAt: datetime


class TransactionsResponse(BaseModel):
    success: bool = True
    transactions: List[TransactionItem]


class CreditPackageResponse(BaseModel):
    id: str
    name: str
    credits: int
    price_cents: int
    currency: str
    popular: bool
    price_formatted: str


class PackagesResponse(BaseModel):
    success: bool = True
    packages: List[CreditPackageResponse]


class CreatePaymentIntentRequest(BaseModel):
    packageId: str


class PaymentIntentResponse(BaseModel):
    clientSecret: str
    paymentIntentId: str
    amount: int
    credits: int


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Current credit balance for the authenticated user."""
    return BalanceResponse(credits=await CreditService.get_balance(db, current_user.id))


@router.get("/transactions", response_model=TransactionsResponse)
async def get_transactions(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Credit ledger, newest first."""
    transactions = await CreditService.get_transactions(db, current_user.id, limit=limit)
    return TransactionsResponse(transactions=[
        TransactionItem(
            id=txn.id,
            amount=txn.amount,
            type=txn.transaction_type,
            description=txn.description,
            createdAt=txn.created_at,
        )
        for txn in transactions
    ])


@router.get("/packages", response_model=PackagesResponse)
async def list_packages():
    return PackagesResponse(packages=stripe_service.get_packages())


@router.post("/create-payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    request: CreatePaymentIntentRequest,
    current_user: User = Depends(get_current_user),
):
    """
    Create a Stripe Payment Intent for a credit package.
    Credits are granted by the Stripe webhook once the payment succeeds.
    """
    result = stripe_service.create_payment_intent(current_user, request.packageId)
    return PaymentIntentResponse(**result)

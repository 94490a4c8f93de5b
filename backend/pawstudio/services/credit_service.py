"""
Credit service for managing generation credits.
Provides atomic debit/credit operations that keep the user balance and the
credit_transactions ledger in step.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.errors import InsufficientCreditsError
from pawstudio.models.credit_transaction import CreditTransaction, TransactionType
from pawstudio.models.user import User
from pawstudio.utils.logging import log_credits_debited, log_credits_granted
from pawstudio.utils.metrics import credits_debited_total, credits_granted_total

logger = logging.getLogger(__name__)


class CreditService:
    """Service for credit management with atomic operations."""

    @staticmethod
    def can_generate(user: User, cost: int) -> bool:
        """A user may generate when the balance covers the cost or the trial is active."""
        return user.trial_mode or user.credits >= cost

    @staticmethod
    def ensure_can_generate(user: User, cost: int) -> None:
        """
        Credit gate, run before any external call.

        Raises:
            InsufficientCreditsError: If the user is out of trial and the balance is short
        """
        if not CreditService.can_generate(user, cost):
            raise InsufficientCreditsError()

    @staticmethod
    async def debit(
        db: AsyncSession,
        user_id: str,
        amount: int,
        description: str,
        commit: bool = True,
    ) -> bool:
        """
        Atomically debit credits and append a usage transaction.
        Prevents negative balances.

        With commit=False the caller owns the transaction, which lets the
        debit share it with other writes; it must call record_debit once
        its commit succeeds.

        Args:
            db: Database session
            user_id: User ID
            amount: Credits to debit; 0 is a no-op that writes nothing
            description: Ledger description
            commit: Commit on success

        Returns:
            True if debit successful, False if insufficient credits

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError("Cannot debit negative amount")
        if amount == 0:
            return True

        # Only decrement if balance >= amount, so concurrent requests
        # cannot both spend the same credits
        result = await db.execute(
            update(User)
            .where(User.id == user_id)
            .where(User.credits >= amount)
            .values(credits=User.credits - amount)
        )

        if result.rowcount == 0:
            return False

        db.add(CreditTransaction(
            user_id=user_id,
            amount=-amount,
            transaction_type=TransactionType.USAGE.value,
            description=description,
        ))

        if commit:
            await db.commit()
            CreditService.record_debit(user_id, amount, await CreditService.get_balance(db, user_id))
        return True

    @staticmethod
    def record_debit(user_id: str, amount: int, balance: int) -> None:
        """Metrics and log for a committed debit."""
        credits_debited_total.inc(amount)
        log_credits_debited(logger, user_id=user_id, amount=amount, balance=balance)

    @staticmethod
    async def credit(
        db: AsyncSession,
        user_id: str,
        amount: int,
        transaction_type: str,
        description: str,
        external_payment_ref: Optional[str] = None,
        commit: bool = True,
    ) -> None:
        """
        Credit (add) credits to user balance and append a ledger row.

        Args:
            db: Database session
            user_id: User ID
            amount: Credits to add (must be positive)
            transaction_type: purchase or bonus
            description: Ledger description
            external_payment_ref: Payment reference used for idempotency
            commit: Commit on success

        Raises:
            ValueError: If amount is negative or zero
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits=User.credits + amount)
        )
        db.add(CreditTransaction(
            user_id=user_id,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
            external_payment_ref=external_payment_ref,
        ))

        if commit:
            await db.commit()

        credits_granted_total.labels(source=transaction_type).inc(amount)
        log_credits_granted(
            logger,
            user_id=user_id,
            amount=amount,
            source=transaction_type,
            payment_ref=external_payment_ref,
        )

    @staticmethod
    async def grant_purchase(
        db: AsyncSession,
        user_id: str,
        amount: int,
        external_payment_ref: str,
        description: str,
    ) -> bool:
        """
        Grant purchased credits once per external payment reference.

        Returns:
            True if credits were granted, False if the reference was already processed
        """
        if await CreditService.has_external_payment_ref(db, external_payment_ref):
            logger.info(f"Payment {external_payment_ref} already processed, skipping")
            return False

        try:
            await CreditService.credit(
                db,
                user_id=user_id,
                amount=amount,
                transaction_type=TransactionType.PURCHASE.value,
                description=description,
                external_payment_ref=external_payment_ref,
            )
        except IntegrityError:
            # A concurrent delivery inserted the same reference first
            await db.rollback()
            logger.info(f"Payment {external_payment_ref} processed concurrently, skipping")
            return False

        return True

    @staticmethod
    async def set_balance(db: AsyncSession, user: User, new_balance: int, description: str) -> None:
        """
        Set a balance directly (admin edit), recording the signed delta as a bonus row.
        Does not commit.

        Raises:
            ValueError: If new_balance is negative
        """
        if new_balance < 0:
            raise ValueError("Credits cannot be negative")

        delta = new_balance - user.credits
        if delta == 0:
            return

        user.credits = new_balance
        db.add(CreditTransaction(
            user_id=user.id,
            amount=delta,
            transaction_type=TransactionType.BONUS.value,
            description=description,
        ))

    @staticmethod
    async def has_external_payment_ref(db: AsyncSession, external_payment_ref: str) -> bool:
        result = await db.execute(
            select(CreditTransaction.id)
            .where(CreditTransaction.external_payment_ref == external_payment_ref)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: str) -> int:
        """
        Get current credit balance for user.

        Args:
            db: Database session
            user_id: User ID

        Returns:
            Current credit balance (0 if user not found)
        """
        result = await db.execute(
            select(User.credits).where(User.id == user_id)
        )
        credits = result.scalar_one_or_none()
        return credits or 0

    @staticmethod
    async def get_transactions(db: AsyncSession, user_id: str, limit: int = 50) -> List[CreditTransaction]:
        """Ledger rows for a user, newest first."""
        result = await db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

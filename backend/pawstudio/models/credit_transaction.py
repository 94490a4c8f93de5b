"""
Credit ledger.

Every balance change writes one row. Purchases and bonuses are positive,
usage is negative. `external_payment_ref` carries the Stripe payment intent
id or the store transaction id and is unique, which makes webhook
re-delivery idempotent.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from pawstudio.models.base import Base, generate_uuid


class TransactionType(str, enum.Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    BONUS = "bonus"


class CreditTransaction(Base):
    """Signed credit movement for a user."""

    __tablename__ = "credit_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False)
    description = Column(String(500), nullable=True)
    external_payment_ref = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("idx_credit_txn_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"amount={self.amount}, type={self.transaction_type})>"
        )

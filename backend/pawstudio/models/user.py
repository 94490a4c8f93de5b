"""
User model.

Accounts are created by the identity layer; this service reads them,
tracks the credit balance and the one-time trial flag.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Index
from sqlalchemy.orm import relationship

from pawstudio.models.base import Base, generate_uuid


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLES = {UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value}


class User(Base):
    """User with credit balance and trial flag."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    credits = Column(Integer, nullable=False, default=0)  # never negative
    trial_mode = Column(Boolean, nullable=False, default=True)  # first generation is free
    role = Column(String(20), nullable=False, default=UserRole.USER.value)
    email_verified = Column(Boolean, nullable=False, default=False)
    stripe_customer_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Owned rows go away with the user
    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    transactions = relationship("CreditTransaction", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    images = relationship("Image", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    photos = relationship("Photo", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index("idx_user_email", "email"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, credits={self.credits}, trial_mode={self.trial_mode})>"

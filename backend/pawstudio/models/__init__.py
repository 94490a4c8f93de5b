"""
Database models package.
"""
from pawstudio.models.base import Base
from pawstudio.models.user import User, UserRole
from pawstudio.models.auth_session import AuthSession
from pawstudio.models.credit_transaction import CreditTransaction, TransactionType
from pawstudio.models.scene import Scene
from pawstudio.models.photo import Photo
from pawstudio.models.image import Image, ProcessingStatus

__all__ = [
    "Base",
    "User",
    "UserRole",
    "AuthSession",
    "CreditTransaction",
    "TransactionType",
    "Scene",
    "Photo",
    "Image",
    "ProcessingStatus",
]

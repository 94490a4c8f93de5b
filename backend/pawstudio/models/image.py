"""
Image model: one generation attempt (or a bare upload awaiting one).

Lifecycle:
1. Upload or process request -> status="pending"
2. AI task submitted -> status="processing"
3. Result persisted and credits debited -> status="completed"
   Any failure after the row exists -> status="failed" with error_message
"""
import enum
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from pawstudio.models.base import Base


class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Image(Base):
    """Generation record linking an original to its processed result."""

    __tablename__ = "images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    photo_id = Column(Integer, ForeignKey("photos.id", ondelete="CASCADE"), nullable=True, index=True)
    original_url = Column(String(1024), nullable=False)
    processed_url = Column(String(1024), nullable=True)
    filter_type = Column(String(64), nullable=True)  # id of the scene used, as text
    credits_used = Column(Integer, nullable=False, default=0)
    processing_status = Column(String(20), nullable=False, default=ProcessingStatus.PENDING.value)
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="images")
    photo = relationship("Photo", back_populates="images")

    __table_args__ = (
        Index("idx_image_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Image(id={self.id}, user_id={self.user_id}, status={self.processing_status})>"

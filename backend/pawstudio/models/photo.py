"""
Photo model: an original upload in the user's library.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from pawstudio.models.base import Base


class Photo(Base):
    """Uploaded source photo. Deleting it removes its images."""

    __tablename__ = "photos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    original_filename = Column(String(512), nullable=True)
    file_url = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="photos")
    images = relationship("Image", back_populates="photo", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Photo(id={self.id}, user_id={self.user_id}, file_url={self.file_url})>"

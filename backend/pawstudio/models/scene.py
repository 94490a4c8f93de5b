"""
Scene model: a named transformation template (prompt + credit cost).
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text

from pawstudio.models.base import Base


class Scene(Base):
    """Generation template selectable by users when active."""

    __tablename__ = "scenes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    prompt = Column(Text, nullable=False)
    category = Column(String(100), nullable=True)
    credit_cost = Column(Integer, nullable=False, default=1)
    preview_image = Column(String(1024), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    usage_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Scene(id={self.id}, name={self.name}, credit_cost={self.credit_cost}, active={self.is_active})>"

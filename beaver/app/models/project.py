"""Database models for projects."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class ProjectModel(Base):
    """Project database model."""
    __tablename__ = "projects"

    id = Column(String(100), primary_key=True)
    user_id = Column(String(100), index=True, nullable=False)
    name = Column(String(500), nullable=False)
    description = Column(Text)
    status = Column(String(20), default="planning")  # lifecycle phase, or closed
    context = Column(JSON)  # ProjectContext snapshot, written on eviction
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

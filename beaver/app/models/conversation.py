"""Database models for conversations."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String
from .project import Base


class ConversationModel(Base):
    """Conversation database model."""
    __tablename__ = "conversations"

    id = Column(String(100), primary_key=True)
    project_id = Column(String(100), ForeignKey("projects.id"), index=True, nullable=False)
    user_id = Column(String(100), index=True, nullable=False)
    title = Column(String(500))
    created_at = Column(DateTime, default=datetime.utcnow)

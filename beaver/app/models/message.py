"""Database models for messages."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from .project import Base


class MessageModel(Base):
    """Message database model."""
    __tablename__ = "messages"

    id = Column(String(100), primary_key=True)
    conversation_id = Column(String(100), ForeignKey("conversations.id"), index=True, nullable=False)
    role = Column(String(20), nullable=False)  # user, assistant, system
    content = Column(Text, nullable=False)
    agent_type = Column(String(50))
    message_metadata = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.utcnow)

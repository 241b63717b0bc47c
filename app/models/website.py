"""
Website Models

A site owner's connected website plus the chat sessions opened on it.
Cached analytics reports live on the website row so dashboard views do not
recompute them on every page load.
"""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from app.models.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Website(Base):
    """Connected website (WordPress, Shopify or Custom)"""
    __tablename__ = "websites"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, index=True, nullable=False)
    url = Column(String, nullable=False)
    name = Column(String, nullable=True)
    type = Column(String, index=True)  # WordPress, Shopify, Custom
    plan = Column(String, nullable=True)
    active = Column(Boolean, default=True, index=True)
    monthly_queries = Column(Integer, default=0)

    # Cached AI overview (refreshed by the scheduler)
    cached_overview = Column(Text, nullable=True)  # JSON
    last_generated_overview = Column(DateTime, nullable=True)

    # Cached AI history report (refreshed by the scheduler)
    cached_analysis = Column(Text, nullable=True)  # JSON, or legacy plain text
    last_ai_generated_history = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    sessions = relationship("ChatSession", back_populates="website")
    ai_threads = relationship("AiThread", back_populates="website")


class ChatSession(Base):
    """Widget session; text and voice conversations hang off a session"""
    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, default=_uuid)
    website_id = Column(String, ForeignKey("websites.id"), index=True, nullable=False)
    shopify_customer_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    website = relationship("Website", back_populates="sessions")

"""
Conversation Models

The three storage shapes chat transcripts arrive in:

- AiThread / AiMessage: legacy threads; messages carry role, type and
  navigation metadata (page_url, scroll_to_text)
- TextConversation / TextChat and VoiceConversation / VoiceChat: widget
  conversations; chats carry message_type plus structured action columns
"""
import uuid
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from app.models.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class AiThread(Base):
    __tablename__ = "ai_threads"

    id = Column(String, primary_key=True, default=_uuid)
    thread_id = Column(String, index=True, nullable=True)  # Upstream assistant thread id
    website_id = Column(String, ForeignKey("websites.id"), index=True, nullable=False)
    title = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    last_message_at = Column(DateTime, default=datetime.utcnow, index=True)

    website = relationship("Website", back_populates="ai_threads")
    messages = relationship("AiMessage", back_populates="thread", order_by="AiMessage.created_at")


class AiMessage(Base):
    __tablename__ = "ai_messages"

    id = Column(String, primary_key=True, default=_uuid)
    thread_id = Column(String, ForeignKey("ai_threads.id"), index=True, nullable=False)
    role = Column(String, nullable=False)  # user, assistant
    content = Column(Text, default="")
    type = Column(String, nullable=True)  # text, voice, ai
    page_url = Column(String, nullable=True)
    scroll_to_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    thread = relationship("AiThread", back_populates="messages")


class TextConversation(Base):
    __tablename__ = "text_conversations"

    id = Column(String, primary_key=True, default=_uuid)
    session_id = Column(String, ForeignKey("chat_sessions.id"), index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    most_recent_conversation_at = Column(DateTime, nullable=True, index=True)
    total_messages = Column(Integer, default=0)

    chats = relationship("TextChat", back_populates="conversation", order_by="TextChat.created_at")


class TextChat(Base):
    __tablename__ = "text_chats"

    id = Column(String, primary_key=True, default=_uuid)
    text_conversation_id = Column(String, ForeignKey("text_conversations.id"), index=True, nullable=False)
    message_type = Column(String, nullable=False)  # user, ai, or an action-specific label
    content = Column(Text, default="")
    action = Column(String, nullable=True)  # add_to_cart, scroll, get_order, "true", ...
    action_type = Column(Text, nullable=True)  # verb, or JSON product detail
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    conversation = relationship("TextConversation", back_populates="chats")


class VoiceConversation(Base):
    __tablename__ = "voice_conversations"

    id = Column(String, primary_key=True, default=_uuid)
    session_id = Column(String, ForeignKey("chat_sessions.id"), index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    most_recent_conversation_at = Column(DateTime, nullable=True, index=True)
    total_messages = Column(Integer, default=0)

    chats = relationship("VoiceChat", back_populates="conversation", order_by="VoiceChat.created_at")


class VoiceChat(Base):
    __tablename__ = "voice_chats"

    id = Column(String, primary_key=True, default=_uuid)
    voice_conversation_id = Column(String, ForeignKey("voice_conversations.id"), index=True, nullable=False)
    message_type = Column(String, nullable=False)
    content = Column(Text, default="")
    action = Column(String, nullable=True)
    action_type = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    conversation = relationship("VoiceConversation", back_populates="chats")

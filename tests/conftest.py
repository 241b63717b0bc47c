"""
Shared fixtures: in-memory database and thread builders.
"""
import itertools
import os

# Must be set before app.config is first imported
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENABLE_LLM_INSIGHTS", "false")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.base import init_db
from app.services.conversation_normalizer import Message, SourceKind, Thread

T0 = datetime(2026, 3, 2, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_message():
    """Factory for canonical messages; ids are unique per test."""
    ids = itertools.count(1)

    def _make(role="assistant", content="", thread_id="t1", at=None, minutes=0, **kwargs):
        return Message(
            id=f"m{next(ids)}",
            thread_id=thread_id,
            role=role,
            content=content,
            created_at=(at or T0) + timedelta(minutes=minutes),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_thread():
    """Factory for canonical threads around a list of messages."""

    def _make(messages, thread_id="t1", kind=SourceKind.TEXT_CONVERSATION):
        for message in messages:
            message.thread_id = thread_id
        created_at = min((m.created_at for m in messages), default=T0)
        last_message_at = max((m.created_at for m in messages), default=T0)
        return Thread(
            id=thread_id,
            source_kind=kind,
            created_at=created_at,
            last_message_at=last_message_at,
            messages=list(messages),
        )

    return _make

"""
Shared fixtures: an in-memory SQLite session and small factories for
people, conversations and messages.
"""
import os

# Must be set before parley.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from parley.database import Base
from parley.models import db_models  # noqa: F401
from parley.models.db_models import (
    ConversationDB,
    ConversationParticipantDB,
    ConversationStatus,
    MessageDB,
    MessageDirection,
    PersonDB,
    PersonRole,
)
from parley.services.ingestion.message_hash import generate_message_hash


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def make_person(db):
    def _make(full_name, role=PersonRole.OTHER):
        person = PersonDB(id=str(uuid4()), full_name=full_name, role=role)
        db.add(person)
        db.commit()
        return person
    return _make


@pytest.fixture
def make_conversation(db):
    """
    Build a stored conversation.

    messages: list of (sender PersonDB, sent_at datetime, text)
    """
    def _make(participants, messages=(), title="Stored Conversation", status=ConversationStatus.OPEN):
        conversation = ConversationDB(
            id=str(uuid4()),
            title=title,
            started_at=messages[0][1] if messages else None,
            ended_at=messages[-1][1] if messages else None,
            status=status,
            amendment_history=[],
        )
        db.add(conversation)
        db.flush()
        for person in participants:
            db.add(ConversationParticipantDB(
                id=str(uuid4()), conversation_id=conversation.id, person_id=person.id,
            ))
        for sender, sent_at, text in messages:
            db.add(MessageDB(
                id=str(uuid4()),
                conversation_id=conversation.id,
                sender_id=sender.id,
                raw_text=text,
                sent_at=sent_at,
                direction=MessageDirection.INBOUND,
                content_hash=generate_message_hash(sender.id, sent_at, text),
            ))
        db.commit()
        return conversation
    return _make


@pytest.fixture
def alice(make_person):
    return make_person("Alice Carter", PersonRole.ME)


@pytest.fixture
def bob(make_person):
    return make_person("Bob Dunn", PersonRole.PARENT)


@pytest.fixture
def pickup_conversation(make_conversation, alice, bob):
    """Three stored messages; the last one is 'Thanks, see you then.'"""
    return make_conversation([alice, bob], [
        (alice, datetime(2024, 3, 1, 9, 0), "Hi Bob, can we talk about the school pickup schedule? It keeps changing."),
        (bob, datetime(2024, 3, 1, 9, 5), "Sure, what do you need changed this week?"),
        (alice, datetime(2024, 3, 1, 9, 10), "Thanks, see you then."),
    ], title="Pickup schedule")

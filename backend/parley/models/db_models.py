"""
Parley - SQLAlchemy ORM Models
Persistent storage for conversations, messages, issues, agreements and profile notes
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum, Boolean,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class PersonRole(str, Enum):
    """Role of a person relative to the account holder."""
    ME = "me"
    PARENT = "parent"
    CHILD = "child"
    ATTORNEY = "attorney"
    PROFESSIONAL = "professional"
    FAMILY = "family"
    OTHER = "other"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ConversationStatus(str, Enum):
    """Resolution state reported by analysis."""
    OPEN = "open"
    RESOLVED = "resolved"


class IssueStatus(str, Enum):
    OPEN = "open"
    MONITORING = "monitoring"
    RESOLVED = "resolved"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ContributionType(str, Enum):
    """How a specific person relates to an issue."""
    PRIMARY_CONTRIBUTOR = "primary_contributor"
    AFFECTED_PARTY = "affected_party"
    SECONDARY_CONTRIBUTOR = "secondary_contributor"
    RESOLVER = "resolver"
    ENABLER = "enabler"
    WITNESS = "witness"
    INVOLVED = "involved"


class ContributionValence(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


class OverrideStatus(str, Enum):
    """Status of an agreement item that supersedes an earlier one."""
    ACTIVE = "active"
    DISPUTED = "disputed"
    WITHDRAWN = "withdrawn"


class ProfileNoteType(str, Enum):
    OBSERVATION = "observation"
    STRATEGY = "strategy"
    PATTERN = "pattern"


class AmendmentMethod(str, Enum):
    """How messages were appended to an existing conversation."""
    FIRST_SENTENCE_SPLICE = "first_sentence_splice"
    HASH_OVERLAP = "hash_overlap"


# =============================================================================
# PEOPLE
# =============================================================================

class PersonDB(Base):
    """Resolution target for extracted names. Identity is immutable, profile fields are not."""
    __tablename__ = "people"

    id = Column(String(36), primary_key=True)  # UUID
    full_name = Column(String(255), nullable=False, index=True)
    role = Column(SQLEnum(PersonRole), nullable=False, default=PersonRole.OTHER)
    role_context = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    profile_notes = relationship("ProfileNoteDB", back_populates="person", cascade="all, delete-orphan")


# =============================================================================
# CONVERSATIONS & MESSAGES
# =============================================================================

class ConversationDB(Base):
    """
    A stored conversation.

    Mutated only by continuity appends and by status resolution from analysis.
    amendment_history is an append-only list of
    {"date": iso, "messagesAdded": int, "method": AmendmentMethod}.
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True)  # UUID
    title = Column(String(500), nullable=False, default="Imported Conversation")
    source_type = Column(String(50), nullable=True)
    started_at = Column(DateTime, nullable=True, index=True)
    ended_at = Column(DateTime, nullable=True, index=True)
    preview_text = Column(Text, nullable=True)

    status = Column(SQLEnum(ConversationStatus), nullable=False, default=ConversationStatus.OPEN, index=True)
    pending_responder_id = Column(String(36), ForeignKey("people.id", ondelete="SET NULL"), nullable=True, index=True)
    amendment_history = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    participants = relationship("ConversationParticipantDB", back_populates="conversation", cascade="all, delete-orphan")
    messages = relationship("MessageDB", back_populates="conversation", cascade="all, delete-orphan")
    pending_responder = relationship("PersonDB", foreign_keys=[pending_responder_id])

    @property
    def participant_ids(self):
        return [p.person_id for p in self.participants]


class ConversationParticipantDB(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "person_id", name="uq_conversation_participant"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id = Column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)

    conversation = relationship("ConversationDB", back_populates="participants")


class MessageDB(Base):
    """Immutable after creation. content_hash is derived, never user supplied."""
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "content_hash", name="uq_message_conversation_hash"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("people.id", ondelete="SET NULL"), nullable=True)
    receiver_id = Column(String(36), ForeignKey("people.id", ondelete="SET NULL"), nullable=True)
    raw_text = Column(Text, nullable=False, default="")
    sent_at = Column(DateTime, nullable=False, index=True)
    direction = Column(SQLEnum(MessageDirection), nullable=False, default=MessageDirection.INBOUND)
    content_hash = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    conversation = relationship("ConversationDB", back_populates="messages")


# =============================================================================
# ISSUES
# =============================================================================

class IssueDB(Base):
    __tablename__ = "issues"

    id = Column(String(36), primary_key=True)  # UUID
    title = Column(String(500), nullable=False, index=True)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(IssueStatus), nullable=False, default=IssueStatus.OPEN)
    priority = Column(SQLEnum(IssuePriority), nullable=False, default=IssuePriority.MEDIUM)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    people = relationship("IssuePersonDB", back_populates="issue", cascade="all, delete-orphan")


class IssuePersonDB(Base):
    """Contribution link. Upserted, never duplicated, per (issue_id, person_id)."""
    __tablename__ = "issue_people"
    __table_args__ = (
        UniqueConstraint("issue_id", "person_id", name="unique_issue_person"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    issue_id = Column(String(36), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id = Column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    contribution_type = Column(SQLEnum(ContributionType), nullable=True, default=ContributionType.INVOLVED)
    contribution_description = Column(Text, nullable=True)
    contribution_valence = Column(SQLEnum(ContributionValence), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    issue = relationship("IssueDB", back_populates="people")


class MessageIssueDB(Base):
    __tablename__ = "message_issues"
    __table_args__ = (
        UniqueConstraint("message_id", "issue_id", name="uq_message_issue"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    message_id = Column(String(36), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    issue_id = Column(String(36), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)


class ConversationIssueDB(Base):
    __tablename__ = "conversation_issues"
    __table_args__ = (
        UniqueConstraint("conversation_id", "issue_id", name="uq_conversation_issue"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    issue_id = Column(String(36), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    reason = Column(Text, nullable=True)


# =============================================================================
# AGREEMENTS
# =============================================================================

class AgreementDB(Base):
    __tablename__ = "agreements"

    id = Column(String(36), primary_key=True)  # UUID
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    source_type = Column(String(50), nullable=False, default="other")
    status = Column(String(50), nullable=False, default="agreed")
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship("AgreementItemDB", back_populates="agreement", cascade="all, delete-orphan")


class AgreementItemDB(Base):
    """
    One agreed term.

    overrides_item_id forms a singly-linked override chain: a later item on the
    same topic points at the item it supersedes. Superseded items are never
    deleted.
    """
    __tablename__ = "agreement_items"

    id = Column(String(36), primary_key=True)  # UUID
    agreement_id = Column(String(36), ForeignKey("agreements.id", ondelete="CASCADE"), nullable=False, index=True)
    topic = Column(String(255), nullable=False, index=True)
    summary = Column(Text, nullable=True)
    full_text = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)

    overrides_item_id = Column(String(36), ForeignKey("agreement_items.id"), nullable=True, index=True)
    override_status = Column(SQLEnum(OverrideStatus), nullable=True)
    contingency_condition = Column(Text, nullable=True)
    source_conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True, index=True)
    source_message_id = Column(String(36), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)

    detected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    agreement = relationship("AgreementDB", back_populates="items")


# =============================================================================
# PROFILE NOTES & ANALYSIS RECORDS
# =============================================================================

class ProfileNoteDB(Base):
    """Re-analysis replaces the note for (person, source conversation, type)."""
    __tablename__ = "profile_notes"
    __table_args__ = (
        UniqueConstraint("person_id", "source_conversation_id", "type", name="uq_profile_note_source"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    person_id = Column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(ProfileNoteType), nullable=False)
    content = Column(Text, nullable=False)
    source_conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    person = relationship("PersonDB", back_populates="profile_notes")


class ConversationAnalysisDB(Base):
    """Latest sanitized analysis for a conversation (one row per conversation)."""
    __tablename__ = "conversation_analyses"

    id = Column(String(36), primary_key=True)  # UUID
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    summary = Column(Text, nullable=False)
    overall_tone = Column(String(50), nullable=False, default="neutral")
    key_topics = Column(JSON, nullable=False, default=list)
    agreement_violations = Column(JSON, nullable=False, default=list)
    message_annotations = Column(JSON, nullable=False, default=list)
    claims_ledger = Column(JSON, nullable=False, default=list)
    alternative_interpretations = Column(JSON, nullable=False, default=list)
    missing_context = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)



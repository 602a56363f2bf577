"""
Parley - Ingestion Models

Transient structures flowing through the import path:
ParsedConversation → DeduplicationResult → ImportPlan → ImportOutcome

Nothing here is persisted directly; the ImportService maps these onto ORM rows.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from .db_models import MessageDirection


# =============================================================================
# ENUMS
# =============================================================================

class MatchType(str, Enum):
    """How an extracted name was matched to a known person."""
    EXACT = "exact"
    PARTIAL = "partial"
    NORMALIZED = "normalized"
    FUZZY = "fuzzy"


class ResolutionAction(str, Enum):
    """Confidence band applied to a participant name at import time."""
    LINK = "link"        # >= auto-link threshold
    SUGGEST = "suggest"  # plausible, ask the user
    CREATE = "create"    # treat as a new identity


class ContinuityMatchType(str, Enum):
    HAS_DUPLICATE_MESSAGES = "has_duplicate_messages"
    DATE_OVERLAP_ONLY = "date_overlap_only"


class ContinuityDecision(str, Enum):
    """User decision gating every continuity write."""
    APPEND = "append"
    CREATE_SEPARATE = "create_separate"
    CANCEL = "cancel"


# =============================================================================
# PARSER OUTPUT
# =============================================================================

@dataclass
class ParsedMessage:
    """One message as produced by an external parser."""
    sender_name: str
    receiver_name: str
    sent_at: datetime
    body: str
    direction: MessageDirection = MessageDirection.INBOUND


@dataclass
class ParsedConversation:
    title: str
    participants: Set[str] = field(default_factory=set)
    messages: List[ParsedMessage] = field(default_factory=list)
    source_type: Optional[str] = None


@dataclass
class DeduplicationResult:
    messages: List[ParsedMessage]
    merged_count: int = 0
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# NAME RESOLUTION
# =============================================================================

@dataclass
class NameMatchResult:
    person_id: str
    person_name: str
    match_score: float
    match_type: MatchType


@dataclass
class NameResolution:
    """Outcome of resolving one participant name during import preview."""
    name: str
    action: ResolutionAction
    person_id: Optional[str] = None
    match: Optional[NameMatchResult] = None
    candidates: List[NameMatchResult] = field(default_factory=list)


# =============================================================================
# CONTINUITY
# =============================================================================

@dataclass
class ContinuityCandidate:
    """An existing conversation that shares participants and dates with an upload."""
    conversation_id: str
    title: str
    match_type: ContinuityMatchType
    duplicate_hashes: List[str] = field(default_factory=list)
    existing_message_count: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicate_hashes)


@dataclass
class StoredMessageRef:
    id: str
    raw_text: str
    sent_at: Optional[datetime]


@dataclass
class FirstSentenceMatch:
    """A stored conversation containing a message that starts with the upload's first sentence."""
    conversation_id: str
    title: str
    matched_sentence: str
    matching_message_id: str
    existing_message_count: int
    last_message: Optional[StoredMessageRef] = None


@dataclass
class PreparedMessage:
    """A parsed message with resolved identities and its content hash."""
    sender_name: str
    receiver_name: str
    sent_at: datetime
    raw_text: str
    direction: MessageDirection
    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    content_hash: str = ""


@dataclass
class SpliceResult:
    added_count: int
    skipped_count: int
    splice_index: int = -1
    duplicate_count: int = 0

    @property
    def splice_found(self) -> bool:
        return self.splice_index >= 0


# =============================================================================
# IMPORT PLAN / OUTCOME
# =============================================================================

@dataclass
class ImportPlan:
    """
    Everything the user needs to decide append vs create-separate vs cancel.

    Building a plan performs no writes.
    """
    title: str
    source_type: Optional[str]
    messages: List[PreparedMessage]
    resolutions: List[NameResolution]
    participant_ids: List[str]
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    merged_fragment_count: int = 0
    warnings: List[str] = field(default_factory=list)
    hash_candidates: List[ContinuityCandidate] = field(default_factory=list)
    first_sentence: str = ""
    first_sentence_match: Optional[FirstSentenceMatch] = None

    @property
    def content_hashes(self) -> List[str]:
        return [m.content_hash for m in self.messages]

    @property
    def primary_candidate(self) -> Optional[ContinuityCandidate]:
        """Largest hash overlap; date-only candidates never qualify."""
        strong = [
            c for c in self.hash_candidates
            if c.match_type == ContinuityMatchType.HAS_DUPLICATE_MESSAGES
        ]
        return strong[0] if strong else None

    @property
    def requires_decision(self) -> bool:
        return self.primary_candidate is not None or self.first_sentence_match is not None


@dataclass
class ImportOutcome:
    decision: ContinuityDecision
    conversation_id: Optional[str] = None
    added_count: int = 0
    skipped_count: int = 0
    duplicate_count: int = 0
    method: Optional[str] = None
    created_person_ids: List[str] = field(default_factory=list)
    person_ids_by_name: Dict[str, str] = field(default_factory=dict)

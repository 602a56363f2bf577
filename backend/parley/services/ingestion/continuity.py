"""
Continuity Detector

Decides whether a freshly parsed upload continues an existing stored
conversation. Two independent strategies, both advisory:

Strategy A - participant / date / hash overlap
    Stored conversations sharing >=1 participant and an overlapping date range.
    has_duplicate_messages  → >=1 upload hash already stored there (strong)
    date_overlap_only       → dates intersect, no shared hash (weak, UI hint only)

Strategy B - first-sentence splice
    The upload's first message's normalized first sentence is looked up as the
    prefix of a stored message. A hit names the target conversation; the splice
    point is found later, at append time, from that conversation's last message.

Detection never writes. Acting on either signal requires an explicit user
decision (see ImportService.commit_import).
"""
import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ...models.db_models import ConversationDB, ConversationParticipantDB, MessageDB
from ...models.ingestion import (
    ContinuityCandidate,
    ContinuityMatchType,
    FirstSentenceMatch,
    StoredMessageRef,
)
from .text_matching import FIRST_SENTENCE_MIN_LENGTH, normalize_text_for_matching

logger = logging.getLogger(__name__)

# Keeps IN (...) lists well under driver parameter limits
HASH_QUERY_CHUNK = 500

# Plain ASCII words pass through text normalization unchanged
_PLAIN_WORD = re.compile(r"[a-z0-9]+")
_NARROWING_WORD_MIN_LENGTH = 4


def _chunks(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _narrowing_word(sentence: str) -> Optional[str]:
    """Longest plain word of the sentence, if long enough to be selective."""
    words = _PLAIN_WORD.findall(sentence)
    if not words:
        return None
    word = max(words, key=len)
    return word if len(word) >= _NARROWING_WORD_MIN_LENGTH else None


class ContinuityDetector:
    """
    Read-only continuity checks against the store.

    Usage:
        detector = ContinuityDetector(db)
        candidates = detector.find_overlapping_conversations(ids, start, end, hashes)
        match = detector.find_conversation_by_first_sentence(sentence)
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # STRATEGY A: participant / date / hash overlap
    # =========================================================================

    def find_overlapping_conversations(
        self,
        participant_ids: Sequence[str],
        started_at: Optional[datetime],
        ended_at: Optional[datetime],
        content_hashes: Sequence[str],
        exclude_conversation_ids: Optional[Sequence[str]] = None,
    ) -> List[ContinuityCandidate]:
        """
        Classify stored conversations that could be continued by an upload.

        Returns candidates with the largest hash overlap first; date-only
        candidates follow, most recently ended first.
        """
        if not participant_ids or started_at is None:
            return []
        ended_at = ended_at or started_at

        shared = select(ConversationParticipantDB.conversation_id).where(
            ConversationParticipantDB.person_id.in_(list(participant_ids))
        )
        query = (
            self.db.query(ConversationDB)
            .filter(ConversationDB.id.in_(shared))
            .filter(ConversationDB.started_at.isnot(None))
            .filter(ConversationDB.started_at <= ended_at)
            .filter(func.coalesce(ConversationDB.ended_at, ConversationDB.started_at) >= started_at)
        )
        if exclude_conversation_ids:
            query = query.filter(ConversationDB.id.notin_(list(exclude_conversation_ids)))

        conversations = query.all()
        unique_hashes = list(dict.fromkeys(h for h in content_hashes if h))

        candidates: List[ContinuityCandidate] = []
        for conversation in conversations:
            duplicates = self.get_existing_hashes(conversation.id, unique_hashes)
            match_type = (
                ContinuityMatchType.HAS_DUPLICATE_MESSAGES
                if duplicates
                else ContinuityMatchType.DATE_OVERLAP_ONLY
            )
            candidates.append(ContinuityCandidate(
                conversation_id=conversation.id,
                title=conversation.title,
                match_type=match_type,
                duplicate_hashes=[h for h in unique_hashes if h in duplicates],
                existing_message_count=self.count_messages(conversation.id),
                started_at=conversation.started_at,
                ended_at=conversation.ended_at,
            ))

        candidates.sort(
            key=lambda c: (c.duplicate_count, c.ended_at or c.started_at or datetime.min),
            reverse=True,
        )

        strong = sum(1 for c in candidates if c.match_type == ContinuityMatchType.HAS_DUPLICATE_MESSAGES)
        logger.info(
            f"Continuity overlap check: {len(candidates)} candidate(s), "
            f"{strong} with duplicate messages"
        )
        return candidates

    def get_existing_hashes(self, conversation_id: str, content_hashes: Sequence[str]) -> set:
        """Subset of content_hashes already stored in the conversation."""
        found = set()
        for chunk in _chunks(list(content_hashes), HASH_QUERY_CHUNK):
            rows = (
                self.db.query(MessageDB.content_hash)
                .filter(MessageDB.conversation_id == conversation_id)
                .filter(MessageDB.content_hash.in_(list(chunk)))
                .all()
            )
            found.update(row[0] for row in rows)
        return found

    def count_messages(self, conversation_id: str) -> int:
        return (
            self.db.query(func.count(MessageDB.id))
            .filter(MessageDB.conversation_id == conversation_id)
            .scalar()
        ) or 0

    # =========================================================================
    # STRATEGY B: first-sentence splice
    # =========================================================================

    def find_conversation_by_first_sentence(
        self,
        first_sentence: str,
        exclude_conversation_ids: Optional[Sequence[str]] = None,
    ) -> Optional[FirstSentenceMatch]:
        """
        Find the earliest stored message whose normalized text starts with first_sentence.

        first_sentence must already be normalized (see extract_first_sentence).
        """
        if not first_sentence or len(first_sentence) < FIRST_SENTENCE_MIN_LENGTH:
            return None

        query = self.db.query(
            MessageDB.id, MessageDB.conversation_id, MessageDB.raw_text,
        )

        # Narrow in SQL on a single word, confirm in Python after normalization.
        # Stored text may differ in whitespace, quotes or dashes, never inside a word.
        word = _narrowing_word(first_sentence)
        if word:
            query = query.filter(
                func.lower(MessageDB.raw_text).like(f"%{_escape_like(word)}%", escape="\\")
            )
        if exclude_conversation_ids:
            query = query.filter(MessageDB.conversation_id.notin_(list(exclude_conversation_ids)))

        for row in query.order_by(MessageDB.sent_at.asc()).all():
            if not normalize_text_for_matching(row.raw_text).startswith(first_sentence):
                continue

            conversation = self.db.get(ConversationDB, row.conversation_id)
            if conversation is None:
                continue

            logger.info(
                f"First-sentence match in conversation {conversation.id} "
                f"(message {row.id})"
            )
            return FirstSentenceMatch(
                conversation_id=conversation.id,
                title=conversation.title,
                matched_sentence=first_sentence,
                matching_message_id=row.id,
                existing_message_count=self.count_messages(conversation.id),
                last_message=self.get_last_message(conversation.id),
            )

        return None

    def get_last_message(self, conversation_id: str) -> Optional[StoredMessageRef]:
        """Most recent stored message of a conversation."""
        message = (
            self.db.query(MessageDB)
            .filter(MessageDB.conversation_id == conversation_id)
            .order_by(MessageDB.sent_at.desc(), MessageDB.created_at.desc())
            .first()
        )
        if message is None:
            return None
        return StoredMessageRef(id=message.id, raw_text=message.raw_text or "", sent_at=message.sent_at)

    # =========================================================================
    # COMBINED VIEW
    # =========================================================================

    def summarize(
        self,
        candidates: List[ContinuityCandidate],
        first_sentence_match: Optional[FirstSentenceMatch],
    ) -> Dict[str, object]:
        """
        Side-by-side view of both signals for the decision prompt.

        The strategies are never arbitrated; disagreement is reported as is.
        """
        strong = [c for c in candidates if c.match_type == ContinuityMatchType.HAS_DUPLICATE_MESSAGES]
        weak = [c for c in candidates if c.match_type == ContinuityMatchType.DATE_OVERLAP_ONLY]
        primary = strong[0] if strong else None
        agree = (
            primary is not None
            and first_sentence_match is not None
            and primary.conversation_id == first_sentence_match.conversation_id
        )
        return {
            "primary_conversation_id": primary.conversation_id if primary else None,
            "first_sentence_conversation_id": (
                first_sentence_match.conversation_id if first_sentence_match else None
            ),
            "duplicate_candidates": len(strong),
            "date_overlap_candidates": len(weak),
            "strategies_agree": agree,
            "requires_decision": primary is not None or first_sentence_match is not None,
        }

"""
Import Service

Two-phase import of a parsed conversation:

1. prepare_import()  - dedup fragments, resolve participant names, hash
                       messages, run both continuity strategies. NO WRITES.
2. commit_import()   - apply the user's decision:
                         cancel          → nothing written
                         create_separate → new conversation
                         append          → splice append (first-sentence match)
                                           or hash-overlap append

Every message insert skips content hashes already stored in the target
conversation, so (conversation_id, content_hash) stays unique.
"""
import logging
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import (
    AUTO_LINK_THRESHOLD,
    DISAMBIGUATION_THRESHOLD,
    FRAGMENT_WINDOW_SECONDS,
    NAME_MATCH_THRESHOLD,
)
from ...models.db_models import (
    AmendmentMethod,
    ConversationDB,
    ConversationParticipantDB,
    ConversationStatus,
    MessageDB,
    MessageDirection,
    PersonDB,
    PersonRole,
)
from ...models.ingestion import (
    ContinuityDecision,
    ImportOutcome,
    ImportPlan,
    NameResolution,
    ParsedConversation,
    PreparedMessage,
    ResolutionAction,
    SpliceResult,
)
from .continuity import ContinuityDetector
from .fragment_dedup import deduplicate_parsed_messages
from .message_hash import generate_message_hash
from .name_matching import find_all_matches, find_best_match
from .text_matching import extract_first_sentence, normalize_text_for_matching
from .timestamps import to_naive_utc

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


class ImportServiceError(Exception):
    """Raised when an import decision cannot be applied."""
    pass


class ImportService:
    """
    Orchestrates conversation imports against the store.

    Usage:
        service = ImportService(db)
        plan = service.prepare_import(parsed)
        outcome = service.commit_import(plan, ContinuityDecision.APPEND)
    """

    def __init__(self, db: Session):
        self.db = db
        self.detector = ContinuityDetector(db)

    # =========================================================================
    # PHASE 1: PREPARE (read-only)
    # =========================================================================

    def prepare_import(
        self,
        parsed: ParsedConversation,
        people: Optional[Sequence[PersonDB]] = None,
    ) -> ImportPlan:
        """Build an ImportPlan for a parsed conversation without writing anything."""
        dedup = deduplicate_parsed_messages(parsed.messages, FRAGMENT_WINDOW_SECONDS)

        if people is None:
            people = self.db.query(PersonDB).all()

        names = self._collect_names(parsed)
        resolutions = [self.resolve_name(name, people) for name in names]
        linked = {
            r.name: r.person_id
            for r in resolutions
            if r.action == ResolutionAction.LINK and r.person_id
        }

        messages = [
            self._prepare_message(m.sender_name, m.receiver_name, m.sent_at, m.body, m.direction, linked)
            for m in dedup.messages
        ]

        participant_ids = list(dict.fromkeys(linked[name] for name in names if name in linked))
        started_at = messages[0].sent_at if messages else None
        ended_at = messages[-1].sent_at if messages else None

        plan = ImportPlan(
            title=parsed.title or "Imported Conversation",
            source_type=parsed.source_type,
            messages=messages,
            resolutions=resolutions,
            participant_ids=participant_ids,
            started_at=started_at,
            ended_at=ended_at,
            merged_fragment_count=dedup.merged_count,
            warnings=list(dedup.warnings),
        )

        # Strategy A needs resolved identities; new people cannot overlap anything
        plan.hash_candidates = self.detector.find_overlapping_conversations(
            participant_ids, started_at, ended_at, plan.content_hashes,
        )

        # Strategy B
        if messages:
            plan.first_sentence = extract_first_sentence(messages[0].raw_text)
            if plan.first_sentence:
                plan.first_sentence_match = self.detector.find_conversation_by_first_sentence(
                    plan.first_sentence,
                )

        logger.info(
            f"Prepared import '{plan.title}': {len(messages)} messages "
            f"({dedup.merged_count} fragments merged), {len(participant_ids)} linked participants, "
            f"requires_decision={plan.requires_decision}"
        )
        return plan

    def resolve_name(self, name: str, people: Sequence[PersonDB]) -> NameResolution:
        """Classify one participant name into the link / suggest / create bands."""
        best = find_best_match(name, people, NAME_MATCH_THRESHOLD)

        if best is not None and best.match_score >= AUTO_LINK_THRESHOLD:
            return NameResolution(name=name, action=ResolutionAction.LINK, person_id=best.person_id, match=best)

        candidates = find_all_matches(name, people, DISAMBIGUATION_THRESHOLD)
        if best is not None and best.match_score >= NAME_MATCH_THRESHOLD:
            return NameResolution(name=name, action=ResolutionAction.SUGGEST, match=best, candidates=candidates)

        return NameResolution(name=name, action=ResolutionAction.CREATE, match=best, candidates=candidates)

    # =========================================================================
    # PHASE 2: COMMIT
    # =========================================================================

    def commit_import(
        self,
        plan: ImportPlan,
        decision: ContinuityDecision,
        target_conversation_id: Optional[str] = None,
        identity_choices: Optional[Mapping[str, Optional[str]]] = None,
    ) -> ImportOutcome:
        """
        Apply the user's continuity decision to a prepared plan.

        identity_choices maps participant name → existing person id, or None to
        force a new person. Names without a choice keep their preview band;
        anything not auto-linked becomes a new person.
        """
        decision = ContinuityDecision(decision)

        if decision == ContinuityDecision.CANCEL:
            logger.info(f"Import '{plan.title}' cancelled by user, nothing written")
            return ImportOutcome(decision=decision)

        target: Optional[ConversationDB] = None
        if decision == ContinuityDecision.APPEND:
            target_conversation_id = target_conversation_id or self._default_target(plan)
            if not target_conversation_id:
                raise ImportServiceError("Append requested but no target conversation was given or detected")
            target = self.db.get(ConversationDB, target_conversation_id)
            if target is None:
                raise ImportServiceError(f"Conversation not found: {target_conversation_id}")

        try:
            person_ids, created = self._resolve_identities(plan, identity_choices or {})
            messages = self._rehash(plan.messages, person_ids)
            participant_ids = list(dict.fromkeys(person_ids.values()))

            if decision == ContinuityDecision.APPEND:
                match = plan.first_sentence_match
                if match is not None and match.conversation_id == target.id:
                    last = self.detector.get_last_message(target.id)
                    splice_sentence = extract_first_sentence(last.raw_text) if last else ""
                    result = self.append_messages_after_splice_point(target, messages, splice_sentence)
                    method = AmendmentMethod.FIRST_SENTENCE_SPLICE
                else:
                    result = self.append_by_hash_overlap(target, messages)
                    method = AmendmentMethod.HASH_OVERLAP
                self._add_participants(target, participant_ids)
                conversation_id = target.id
            else:
                conversation = self._create_conversation(plan, participant_ids)
                result = self._insert_new_messages(conversation, messages)
                method = None
                conversation_id = conversation.id

            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Import '{plan.title}' failed, rolled back")
            raise

        logger.info(
            f"Import '{plan.title}' committed ({decision.value}) into {conversation_id}: "
            f"{result.added_count} added, {result.skipped_count} skipped, "
            f"{result.duplicate_count} duplicate hashes"
        )
        return ImportOutcome(
            decision=decision,
            conversation_id=conversation_id,
            added_count=result.added_count,
            skipped_count=result.skipped_count,
            duplicate_count=result.duplicate_count,
            method=method.value if method else None,
            created_person_ids=created,
            person_ids_by_name=person_ids,
        )

    # =========================================================================
    # APPEND PATHS
    # =========================================================================

    def append_messages_after_splice_point(
        self,
        conversation: ConversationDB,
        messages: Sequence[PreparedMessage],
        splice_sentence: str,
    ) -> SpliceResult:
        """
        Append only the messages after the splice point.

        The splice point is the first upload message whose normalized text
        starts with splice_sentence. Without a splice point every message is
        appended.
        """
        splice_index = -1
        if splice_sentence:
            for i, message in enumerate(messages):
                if normalize_text_for_matching(message.raw_text).startswith(splice_sentence):
                    splice_index = i
                    break

        if splice_index < 0:
            logger.warning(
                f"No splice point found in upload for conversation {conversation.id}, appending all messages"
            )
        to_insert = list(messages[splice_index + 1:]) if splice_index >= 0 else list(messages)

        added, duplicates = self._insert_messages(conversation.id, to_insert)
        self._record_append(conversation, added, AmendmentMethod.FIRST_SENTENCE_SPLICE)

        return SpliceResult(
            added_count=len(added),
            skipped_count=len(messages) - len(to_insert),
            splice_index=splice_index,
            duplicate_count=duplicates,
        )

    def append_by_hash_overlap(
        self,
        conversation: ConversationDB,
        messages: Sequence[PreparedMessage],
    ) -> SpliceResult:
        """Append every message whose content hash is not yet stored in the conversation."""
        added, duplicates = self._insert_messages(conversation.id, list(messages))
        self._record_append(conversation, added, AmendmentMethod.HASH_OVERLAP)
        return SpliceResult(added_count=len(added), skipped_count=duplicates, duplicate_count=duplicates)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _collect_names(self, parsed: ParsedConversation) -> List[str]:
        names: List[str] = []
        for name in sorted(parsed.participants or []):
            names.append(name)
        for message in parsed.messages:
            names.extend([message.sender_name, message.receiver_name])
        cleaned = [" ".join((n or "").split()) for n in names]
        return list(dict.fromkeys(n for n in cleaned if n))

    def _prepare_message(self, sender_name, receiver_name, sent_at, body, direction, person_ids) -> PreparedMessage:
        sender_id = person_ids.get(" ".join((sender_name or "").split()))
        receiver_id = person_ids.get(" ".join((receiver_name or "").split()))
        sent_at = to_naive_utc(sent_at)
        return PreparedMessage(
            sender_name=sender_name,
            receiver_name=receiver_name,
            sent_at=sent_at,
            raw_text=body or "",
            direction=MessageDirection(direction or MessageDirection.INBOUND),
            sender_id=sender_id,
            receiver_id=receiver_id,
            content_hash=generate_message_hash(sender_id or sender_name, sent_at, body),
        )

    def _rehash(self, messages: Sequence[PreparedMessage], person_ids: Dict[str, str]) -> List[PreparedMessage]:
        """Re-key messages on the final person ids chosen at commit."""
        return [
            self._prepare_message(m.sender_name, m.receiver_name, m.sent_at, m.raw_text, m.direction, person_ids)
            for m in messages
        ]

    def _default_target(self, plan: ImportPlan) -> Optional[str]:
        if plan.first_sentence_match is not None:
            return plan.first_sentence_match.conversation_id
        if plan.primary_candidate is not None:
            return plan.primary_candidate.conversation_id
        return None

    def _resolve_identities(
        self,
        plan: ImportPlan,
        identity_choices: Mapping[str, Optional[str]],
    ) -> Tuple[Dict[str, str], List[str]]:
        person_ids: Dict[str, str] = {}
        created: List[str] = []

        for resolution in plan.resolutions:
            if resolution.name in identity_choices:
                chosen = identity_choices[resolution.name]
                if chosen:
                    if self.db.get(PersonDB, chosen) is None:
                        raise ImportServiceError(f"Person not found: {chosen}")
                    person_ids[resolution.name] = chosen
                    continue
            elif resolution.action == ResolutionAction.LINK and resolution.person_id:
                person_ids[resolution.name] = resolution.person_id
                continue

            person = PersonDB(id=str(uuid4()), full_name=resolution.name, role=PersonRole.OTHER)
            self.db.add(person)
            person_ids[resolution.name] = person.id
            created.append(person.id)

        if created:
            self.db.flush()
            logger.info(f"Created {len(created)} new people during import")
        return person_ids, created

    def _create_conversation(self, plan: ImportPlan, participant_ids: Sequence[str]) -> ConversationDB:
        conversation = ConversationDB(
            id=str(uuid4()),
            title=plan.title,
            source_type=plan.source_type,
            started_at=plan.started_at,
            ended_at=plan.ended_at,
            status=ConversationStatus.OPEN,
            amendment_history=[],
        )
        self.db.add(conversation)
        self.db.flush()
        self._add_participants(conversation, participant_ids)
        return conversation

    def _insert_new_messages(self, conversation: ConversationDB, messages: Sequence[PreparedMessage]) -> SpliceResult:
        added, duplicates = self._insert_messages(conversation.id, list(messages))
        if added:
            conversation.preview_text = _preview(added[-1].raw_text)
        return SpliceResult(added_count=len(added), skipped_count=duplicates, duplicate_count=duplicates)

    def _insert_messages(
        self,
        conversation_id: str,
        messages: List[PreparedMessage],
    ) -> Tuple[List[PreparedMessage], int]:
        """Insert messages whose hash is new to the conversation. Returns (inserted, duplicates)."""
        existing = self.detector.get_existing_hashes(conversation_id, [m.content_hash for m in messages])
        seen = set(existing)
        inserted: List[PreparedMessage] = []

        for message in messages:
            if message.content_hash in seen:
                continue
            seen.add(message.content_hash)
            self.db.add(MessageDB(
                id=str(uuid4()),
                conversation_id=conversation_id,
                sender_id=message.sender_id,
                receiver_id=message.receiver_id,
                raw_text=message.raw_text,
                sent_at=message.sent_at,
                direction=message.direction,
                content_hash=message.content_hash,
            ))
            inserted.append(message)

        self.db.flush()
        return inserted, len(messages) - len(inserted)

    def _record_append(self, conversation: ConversationDB, added: List[PreparedMessage], method: AmendmentMethod):
        """Amendment history entry plus date range and preview refresh."""
        if not added:
            return

        latest = max(m.sent_at for m in added)
        earliest = min(m.sent_at for m in added)
        if conversation.ended_at is None or latest > conversation.ended_at:
            conversation.ended_at = latest
        if conversation.started_at is None or earliest < conversation.started_at:
            conversation.started_at = earliest
        conversation.preview_text = _preview(added[-1].raw_text)

        # Reassign so the JSON column is flagged dirty
        conversation.amendment_history = list(conversation.amendment_history or []) + [{
            "date": datetime.utcnow().isoformat(),
            "messagesAdded": len(added),
            "method": method.value,
        }]
        conversation.updated_at = datetime.utcnow()

    def _add_participants(self, conversation: ConversationDB, person_ids: Sequence[str]):
        existing = {
            row[0]
            for row in self.db.query(ConversationParticipantDB.person_id)
            .filter(ConversationParticipantDB.conversation_id == conversation.id)
            .all()
        }
        for person_id in person_ids:
            if person_id in existing:
                continue
            existing.add(person_id)
            self.db.add(ConversationParticipantDB(
                id=str(uuid4()),
                conversation_id=conversation.id,
                person_id=person_id,
            ))
        self.db.flush()


def _preview(text: str) -> str:
    return (text or "")[:PREVIEW_LENGTH] + "..."

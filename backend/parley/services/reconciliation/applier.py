"""
Reconciliation Applier

Merges a SanitizedAnalysisResult into persisted state for one conversation.

Sections, in order:
1. analysis    - upsert the conversation_analyses row
2. issues      - find-or-create / update issues, upsert links
3. people      - profile notes per (person, conversation, type)
4. agreements  - detected agreements at or above the confidence floor
5. state       - conversation status and pending responder

Every record (issue action, person, agreement) is its own unit of work:
committed on success, rolled back and reported on failure, without
stopping the rest. Re-running with the same input writes no new rows.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import AGREEMENT_MIN_CONFIDENCE, NAME_MATCH_THRESHOLD
from ...models.analysis import (
    AgreementConfidence,
    ConversationState,
    ProcessingResult,
    SanitizedAnalysisResult,
)
from ...models.db_models import (
    ConversationAnalysisDB,
    ConversationDB,
    ConversationStatus,
    PersonDB,
)
from ..ingestion.name_matching import find_best_match
from .agreements import AgreementChainService
from .issues import IssueReconciler, ReconciliationError
from .profile_notes import ProfileNoteWriter, build_profile_notes

logger = logging.getLogger(__name__)

SECTIONS = ("analysis", "issues", "people", "agreements", "state")


def _as_dicts(items) -> List[dict]:
    return [dict(item) for item in items]


def _annotation_payload(result: SanitizedAnalysisResult) -> List[dict]:
    return [
        {
            "messageId": a.message_id,
            "flags": [
                {
                    "type": f.type,
                    "attributedToPersonId": f.attributed_to_person_id,
                    "description": f.description,
                    "severity": f.severity,
                }
                for f in a.flags
            ],
        }
        for a in result.message_annotations
    ]


class ReconciliationApplier:
    """
    Usage:
        applier = ReconciliationApplier(db)
        result = applier.apply(conversation_id, validation.sanitized)
    """

    def __init__(self, db: Session, min_agreement_confidence: str = AGREEMENT_MIN_CONFIDENCE):
        self.db = db
        self.issues = IssueReconciler(db)
        self.notes = ProfileNoteWriter(db)
        self.agreements = AgreementChainService(db)
        try:
            self.min_agreement_confidence = AgreementConfidence(min_agreement_confidence)
        except ValueError:
            logger.warning(f"Unknown agreement confidence floor '{min_agreement_confidence}', using high")
            self.min_agreement_confidence = AgreementConfidence.HIGH

    def apply(
        self,
        conversation_id: str,
        sanitized: SanitizedAnalysisResult,
        skip_sections: Iterable[str] = (),
    ) -> ProcessingResult:
        """
        Apply every section of a sanitized analysis.

        Raises ReconciliationError only if the conversation does not exist;
        all other failures are reported in the returned ProcessingResult.
        """
        if self.db.get(ConversationDB, conversation_id) is None:
            raise ReconciliationError(f"Conversation not found: {conversation_id}")

        skip = set(skip_sections) & set(SECTIONS)
        result = ProcessingResult(success=True)

        if "analysis" not in skip:
            self._apply_analysis(conversation_id, sanitized, result)
        if "issues" not in skip and sanitized.issue_actions:
            self._apply_issues(conversation_id, sanitized, result)
        if "people" not in skip and sanitized.person_analyses:
            self._apply_people(conversation_id, sanitized, result)
        if "agreements" not in skip and sanitized.detected_agreements:
            self._apply_agreements(conversation_id, sanitized, result)
        if "state" not in skip and sanitized.has_conversation_state:
            self._apply_state(conversation_id, sanitized.conversation_state, result)

        result.success = not result.errors
        logger.info(
            f"Reconciliation for {conversation_id}: processed={result.sections_processed} "
            f"failed={result.sections_failed}"
        )
        return result

    # =========================================================================
    # SECTIONS
    # =========================================================================

    def _fail(self, result: ProcessingResult, section: str, message: str):
        self.db.rollback()
        logger.error(message)
        result.errors.append(message)
        if section not in result.sections_failed:
            result.sections_failed.append(section)

    def _finish(self, result: ProcessingResult, section: str):
        if section not in result.sections_failed:
            result.sections_processed.append(section)

    def _apply_analysis(self, conversation_id: str, sanitized: SanitizedAnalysisResult, result: ProcessingResult):
        try:
            self.save_conversation_analysis(conversation_id, sanitized)
            self.db.commit()
        except Exception as e:
            self._fail(result, "analysis", f"Failed to save analysis: {e}")
        self._finish(result, "analysis")

    def _apply_issues(self, conversation_id: str, sanitized: SanitizedAnalysisResult, result: ProcessingResult):
        for action in sanitized.issue_actions:
            try:
                outcome = self.issues.apply_action(conversation_id, action)
                self.db.commit()
            except Exception as e:
                self._fail(result, "issues", f"Failed to process issue '{action.title}': {e}")
                continue

            if outcome == "created":
                result.issues_created += 1
            elif outcome == "reused":
                result.issues_reused += 1
            else:
                result.issues_updated += 1
        self._finish(result, "issues")

    def _apply_people(self, conversation_id: str, sanitized: SanitizedAnalysisResult, result: ProcessingResult):
        as_of = datetime.utcnow().strftime("%Y-%m-%d")
        for analysis in sanitized.person_analyses:
            try:
                if self.db.get(PersonDB, analysis.person_id) is None:
                    result.warnings.append(f"Skipped notes for unknown person {analysis.person_id}")
                    continue
                notes = build_profile_notes(analysis, as_of)
                result.notes_written += self.notes.upsert_notes(conversation_id, analysis.person_id, notes)
                self.db.commit()
            except Exception as e:
                self._fail(result, "people", f"Failed to write profile notes for {analysis.person_id}: {e}")
        self._finish(result, "people")

    def _apply_agreements(self, conversation_id: str, sanitized: SanitizedAnalysisResult, result: ProcessingResult):
        floor = self.min_agreement_confidence.rank
        for detected in sanitized.detected_agreements:
            if AgreementConfidence(detected.confidence).rank < floor:
                result.warnings.append(
                    f"Agreement '{detected.topic}' left for review ({detected.confidence} confidence)"
                )
                continue
            try:
                self.agreements.apply_detected_agreement(conversation_id, detected)
                self.db.commit()
                result.agreement_items_written += 1
            except Exception as e:
                self._fail(result, "agreements", f"Failed to record agreement '{detected.topic}': {e}")
        self._finish(result, "agreements")

    def _apply_state(self, conversation_id: str, state: ConversationState, result: ProcessingResult):
        try:
            self.update_conversation_state(conversation_id, state)
            self.db.commit()
        except Exception as e:
            self._fail(result, "state", f"Failed to update conversation state: {e}")
        self._finish(result, "state")

    # =========================================================================
    # WRITES
    # =========================================================================

    def save_conversation_analysis(self, conversation_id: str, sanitized: SanitizedAnalysisResult) -> ConversationAnalysisDB:
        record = (
            self.db.query(ConversationAnalysisDB)
            .filter(ConversationAnalysisDB.conversation_id == conversation_id)
            .first()
        )
        if record is None:
            record = ConversationAnalysisDB(id=str(uuid4()), conversation_id=conversation_id)
            self.db.add(record)

        summary = sanitized.conversation_analysis
        record.summary = summary.summary
        record.overall_tone = summary.overall_tone
        record.key_topics = list(summary.key_topics)
        record.agreement_violations = _as_dicts(sanitized.agreement_violations)
        record.message_annotations = _annotation_payload(sanitized)
        record.claims_ledger = _as_dicts(sanitized.claims_ledger)
        record.alternative_interpretations = _as_dicts(sanitized.alternative_interpretations)
        record.missing_context = list(sanitized.missing_context)
        record.updated_at = datetime.utcnow()
        self.db.flush()
        return record

    def resolve_pending_responder(self, conversation: ConversationDB, name: Optional[str]) -> Optional[str]:
        """Fuzzy-match a free-text responder name to a participant (or anyone, if none are recorded)."""
        if not name:
            return None

        participant_ids = conversation.participant_ids
        query = self.db.query(PersonDB)
        if participant_ids:
            query = query.filter(PersonDB.id.in_(participant_ids))
        match = find_best_match(name, query.all(), NAME_MATCH_THRESHOLD)

        # Weighted partial/normalized scores can land below the threshold itself
        if match is None or match.match_score < NAME_MATCH_THRESHOLD:
            logger.info(f"Pending responder '{name}' did not match any person, storing null")
            return None
        return match.person_id

    def update_conversation_state(self, conversation_id: str, state: ConversationState) -> ConversationDB:
        conversation = self.db.get(ConversationDB, conversation_id)
        if conversation is None:
            raise ReconciliationError(f"Conversation not found: {conversation_id}")

        conversation.status = ConversationStatus(state.status)
        if conversation.status == ConversationStatus.RESOLVED:
            conversation.pending_responder_id = None
        else:
            conversation.pending_responder_id = self.resolve_pending_responder(
                conversation, state.pending_responder_name,
            )
        self.db.flush()
        return conversation

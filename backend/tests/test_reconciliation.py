"""
Tests for reconciling sanitized analysis into stored state.

Covers:
1. Idempotence: applying the same analysis twice writes no new rows
2. Issue find-or-create by normalized title, contribution upserts
3. Partial failure: one bad record does not stop the rest
4. Profile note rendering and per-type upsert
5. Conversation state and pending responder resolution
6. Agreement confidence floor
"""
import pytest
from sqlalchemy import func


def _message_ids(db, conversation_id):
    from parley.models.db_models import MessageDB

    rows = (
        db.query(MessageDB)
        .filter(MessageDB.conversation_id == conversation_id)
        .order_by(MessageDB.sent_at)
        .all()
    )
    return [m.id for m in rows]


def _sanitize(payload):
    from parley.services.analysis import validate_and_sanitize_analysis_result

    return validate_and_sanitize_analysis_result(payload).sanitized


@pytest.fixture
def analysis_payload(db, alice, bob, pickup_conversation):
    m1, m2, _ = _message_ids(db, pickup_conversation.id)
    return {
        "conversationAnalysis": {
            "summary": "Alice asked to change the pickup schedule; Bob asked for details.",
            "overallTone": "cooperative",
            "keyTopics": ["pickup"],
        },
        "conversationState": {"status": "open", "pendingResponderName": "Bob Dun"},
        "issueActions": [{
            "action": "create",
            "title": "School pickup schedule",
            "description": "Pickup times keep changing",
            "priority": "high",
            "linkedMessageIds": [m1, m2, "missing-message"],
            "reasoning": "Raised in the opening message",
            "personContributions": [
                {"personId": alice.id, "contributionType": "affected_party",
                 "contributionDescription": "Has to rearrange work", "contributionValence": "negative"},
                {"personId": bob.id, "contributionType": "primary_contributor",
                 "contributionDescription": "Changes the times"},
                {"personId": "ghost", "contributionType": "witness",
                 "contributionDescription": "Not a stored person"},
            ],
        }],
        "personAnalyses": [
            {
                "personId": bob.id,
                "behavioralAssessment": {"summary": "Responsive but vague", "cooperationLevel": "medium"},
                "notablePatterns": {"positive": ["Replies quickly"], "concerning": ["Avoids specifics"]},
                "interactionRecommendations": ["Ask for a concrete time"],
            },
            {"personId": "ghost", "notablePatterns": {"positive": ["n/a"]}},
        ],
        "detectedAgreements": [
            {"topic": "Weekend pickup", "summary": "Saturday at 10am", "confidence": "high", "messageIds": [m2]},
            {"topic": "Holidays", "summary": "Maybe alternate years", "confidence": "low"},
        ],
    }


def _row_counts(db):
    from parley.models.db_models import (
        AgreementDB,
        AgreementItemDB,
        ConversationAnalysisDB,
        ConversationIssueDB,
        IssueDB,
        IssuePersonDB,
        MessageIssueDB,
        ProfileNoteDB,
    )

    return {
        model.__tablename__: db.query(func.count(model.id)).scalar()
        for model in (
            IssueDB, IssuePersonDB, MessageIssueDB, ConversationIssueDB,
            ProfileNoteDB, AgreementDB, AgreementItemDB, ConversationAnalysisDB,
        )
    }


# =============================================================================
# FULL APPLY
# =============================================================================

class TestReconciliationApplier:
    """Tests for ReconciliationApplier.apply."""

    def test_first_run(self, db, bob, pickup_conversation, analysis_payload):
        from parley.models.db_models import ConversationDB, IssuePersonDB, ContributionType
        from parley.services.reconciliation import ReconciliationApplier

        result = ReconciliationApplier(db).apply(pickup_conversation.id, _sanitize(analysis_payload))

        assert result.success is True
        assert result.sections_processed == ["analysis", "issues", "people", "agreements", "state"]
        assert result.sections_failed == []
        assert result.issues_created == 1
        assert result.notes_written == 3
        assert result.agreement_items_written == 1
        assert any("ghost" in w for w in result.warnings)
        assert any("Holidays" in w for w in result.warnings)

        counts = _row_counts(db)
        assert counts["issues"] == 1
        assert counts["issue_people"] == 2
        assert counts["message_issues"] == 2
        assert counts["conversation_issues"] == 1
        assert counts["profile_notes"] == 3
        assert counts["agreement_items"] == 1
        assert counts["conversation_analyses"] == 1

        link = db.query(IssuePersonDB).filter(IssuePersonDB.person_id == bob.id).one()
        assert link.contribution_type == ContributionType.PRIMARY_CONTRIBUTOR
        assert link.contribution_valence is None

        conversation = db.get(ConversationDB, pickup_conversation.id)
        assert conversation.pending_responder_id == bob.id

    def test_reapplying_writes_no_new_rows(self, db, pickup_conversation, analysis_payload):
        from parley.services.reconciliation import ReconciliationApplier

        applier = ReconciliationApplier(db)
        applier.apply(pickup_conversation.id, _sanitize(analysis_payload))
        after_first = _row_counts(db)

        second = applier.apply(pickup_conversation.id, _sanitize(analysis_payload))

        assert second.success is True
        assert second.issues_created == 0
        assert second.issues_reused == 1
        assert _row_counts(db) == after_first

    def test_reanalysis_updates_contribution_in_place(self, db, alice, pickup_conversation, analysis_payload):
        from parley.models.db_models import IssuePersonDB
        from parley.services.reconciliation import ReconciliationApplier

        applier = ReconciliationApplier(db)
        applier.apply(pickup_conversation.id, _sanitize(analysis_payload))

        contributions = analysis_payload["issueActions"][0]["personContributions"]
        contributions[0]["contributionDescription"] = "Missed a meeting because of it"
        applier.apply(pickup_conversation.id, _sanitize(analysis_payload))

        links = db.query(IssuePersonDB).filter(IssuePersonDB.person_id == alice.id).all()
        assert len(links) == 1
        assert links[0].contribution_description == "Missed a meeting because of it"

    def test_reanalysis_drops_note_types_no_longer_produced(self, db, bob, pickup_conversation, analysis_payload):
        from parley.models.db_models import ProfileNoteDB, ProfileNoteType
        from parley.services.reconciliation import ReconciliationApplier

        applier = ReconciliationApplier(db)
        applier.apply(pickup_conversation.id, _sanitize(analysis_payload))

        del analysis_payload["personAnalyses"][0]["interactionRecommendations"]
        applier.apply(pickup_conversation.id, _sanitize(analysis_payload))

        types = {n.type for n in db.query(ProfileNoteDB).filter(ProfileNoteDB.person_id == bob.id).all()}
        assert ProfileNoteType.STRATEGY not in types
        assert ProfileNoteType.OBSERVATION in types
        assert len(types) == 2

    def test_existing_title_reused_despite_case_and_spacing(self, db, pickup_conversation, analysis_payload):
        from uuid import uuid4
        from parley.models.db_models import IssueDB
        from parley.services.reconciliation import ReconciliationApplier

        existing = IssueDB(id=str(uuid4()), title="school  PICKUP schedule")
        db.add(existing)
        db.commit()

        result = ReconciliationApplier(db).apply(pickup_conversation.id, _sanitize(analysis_payload))

        assert result.issues_created == 0
        assert result.issues_reused == 1
        assert db.query(func.count(IssueDB.id)).scalar() == 1

    def test_partial_failure_continues(self, db, pickup_conversation, analysis_payload):
        from parley.models.db_models import IssueDB
        from parley.services.reconciliation import ReconciliationApplier

        analysis_payload["issueActions"].insert(0, {
            "action": "update", "issueId": "missing-issue", "title": "Ghost issue",
        })
        result = ReconciliationApplier(db).apply(pickup_conversation.id, _sanitize(analysis_payload))

        assert result.success is False
        assert result.sections_failed == ["issues"]
        assert "issues" not in result.sections_processed
        assert {"analysis", "people", "agreements", "state"} <= set(result.sections_processed)
        assert len(result.errors) == 1
        assert "Ghost issue" in result.errors[0]
        # The good action after the failing one still landed
        assert db.query(func.count(IssueDB.id)).scalar() == 1

    def test_skip_sections(self, db, pickup_conversation, analysis_payload):
        from parley.services.reconciliation import ReconciliationApplier

        result = ReconciliationApplier(db).apply(
            pickup_conversation.id, _sanitize(analysis_payload), skip_sections=("issues", "people"),
        )
        counts = _row_counts(db)

        assert "issues" not in result.sections_processed
        assert counts["issues"] == 0
        assert counts["profile_notes"] == 0

    def test_empty_analysis_only_saves_record(self, db, pickup_conversation):
        from parley.models.db_models import ConversationAnalysisDB
        from parley.services.reconciliation import ReconciliationApplier

        result = ReconciliationApplier(db).apply(pickup_conversation.id, _sanitize({}))

        assert result.sections_processed == ["analysis"]
        record = db.query(ConversationAnalysisDB).one()
        assert record.overall_tone == "neutral"

    def test_unknown_conversation_raises(self, db):
        from parley.services.reconciliation import ReconciliationApplier, ReconciliationError

        with pytest.raises(ReconciliationError):
            ReconciliationApplier(db).apply("missing", _sanitize({}))


# =============================================================================
# ISSUE UPDATES
# =============================================================================

class TestIssueUpdates:
    """Tests for update actions against an existing issue."""

    @pytest.fixture
    def resolved_issue(self, db):
        from uuid import uuid4
        from parley.models.db_models import IssueDB, IssuePriority, IssueStatus

        issue = IssueDB(
            id=str(uuid4()), title="Pickup", description="Original",
            priority=IssuePriority.HIGH, status=IssueStatus.RESOLVED,
        )
        db.add(issue)
        db.commit()
        return issue

    def test_update_keeps_unsupplied_fields(self, db, pickup_conversation, resolved_issue):
        from parley.models.db_models import ConversationIssueDB, IssuePriority, IssueStatus
        from parley.services.reconciliation import ReconciliationApplier

        payload = {"issueActions": [{
            "action": "update", "issueId": resolved_issue.id,
            "title": "Pickup", "description": "More detail",
        }]}
        result = ReconciliationApplier(db).apply(pickup_conversation.id, _sanitize(payload))

        assert result.issues_updated == 1
        db.expire_all()
        assert resolved_issue.description == "More detail"
        assert resolved_issue.status == IssueStatus.RESOLVED
        assert resolved_issue.priority == IssuePriority.HIGH
        assert db.query(ConversationIssueDB).filter(ConversationIssueDB.issue_id == resolved_issue.id).count() == 1

    def test_update_writes_supplied_fields(self, db, pickup_conversation, resolved_issue):
        from parley.models.db_models import IssuePriority, IssueStatus
        from parley.services.reconciliation import ReconciliationApplier

        payload = {"issueActions": [{
            "action": "update", "issueId": resolved_issue.id, "title": "Pickup",
            "status": "open", "priority": "low",
        }]}
        ReconciliationApplier(db).apply(pickup_conversation.id, _sanitize(payload))

        db.expire_all()
        assert resolved_issue.description == "Original"
        assert resolved_issue.status == IssueStatus.OPEN
        assert resolved_issue.priority == IssuePriority.LOW


# =============================================================================
# CONVERSATION STATE
# =============================================================================

class TestConversationState:
    """Tests for status and pending responder updates."""

    def test_unmatched_responder_stored_as_null(self, db, pickup_conversation):
        from parley.models.analysis import ConversationState
        from parley.services.reconciliation import ReconciliationApplier

        conversation = ReconciliationApplier(db).update_conversation_state(
            pickup_conversation.id, ConversationState(status="open", pending_responder_name="Zed Unknown"),
        )
        assert conversation.pending_responder_id is None

    def test_weak_shared_surname_match_stored_as_null(self, db, bob, pickup_conversation):
        """'Carl Dunn' shares Bob Dunn's surname but scores below the match threshold."""
        from parley.models.analysis import ConversationState
        from parley.services.reconciliation import ReconciliationApplier

        conversation = ReconciliationApplier(db).update_conversation_state(
            pickup_conversation.id, ConversationState(status="open", pending_responder_name="Carl Dunn"),
        )
        assert conversation.pending_responder_id is None

    def test_resolved_clears_pending_responder(self, db, bob, pickup_conversation):
        from parley.models.analysis import ConversationState
        from parley.models.db_models import ConversationStatus
        from parley.services.reconciliation import ReconciliationApplier

        applier = ReconciliationApplier(db)
        applier.update_conversation_state(
            pickup_conversation.id, ConversationState(status="open", pending_responder_name="Bob Dunn"),
        )
        conversation = applier.update_conversation_state(
            pickup_conversation.id, ConversationState(status="resolved", pending_responder_name="Bob Dunn"),
        )

        assert conversation.status == ConversationStatus.RESOLVED
        assert conversation.pending_responder_id is None

    def test_state_section_skipped_when_not_reported(self, db, bob, pickup_conversation):
        from parley.models.analysis import ConversationState
        from parley.models.db_models import ConversationDB
        from parley.services.reconciliation import ReconciliationApplier

        applier = ReconciliationApplier(db)
        applier.update_conversation_state(
            pickup_conversation.id, ConversationState(status="open", pending_responder_name="Bob Dunn"),
        )
        db.commit()

        payload = {"conversationAnalysis": {"summary": "s", "overallTone": "neutral"}}
        applier.apply(pickup_conversation.id, _sanitize(payload))

        assert db.get(ConversationDB, pickup_conversation.id).pending_responder_id == bob.id


# =============================================================================
# AGREEMENT CONFIDENCE FLOOR
# =============================================================================

class TestAgreementConfidenceFloor:
    """Tests for the detected-agreement confidence floor."""

    def test_lower_floor_accepts_medium(self, db, pickup_conversation):
        from parley.services.reconciliation import ReconciliationApplier

        payload = {
            "conversationAnalysis": {"summary": "s", "overallTone": "neutral"},
            "detectedAgreements": [
                {"topic": "Pickup", "summary": "Saturdays", "confidence": "medium"},
                {"topic": "Dinner", "summary": "Sundays", "confidence": "low"},
            ],
        }
        result = ReconciliationApplier(db, min_agreement_confidence="medium").apply(
            pickup_conversation.id, _sanitize(payload),
        )
        assert result.agreement_items_written == 1

    def test_invalid_floor_means_high(self, db):
        from parley.models.analysis import AgreementConfidence
        from parley.services.reconciliation import ReconciliationApplier

        applier = ReconciliationApplier(db, min_agreement_confidence="bogus")
        assert applier.min_agreement_confidence == AgreementConfidence.HIGH


# =============================================================================
# PROFILE NOTES
# =============================================================================

class TestBuildProfileNotes:
    """Tests for build_profile_notes rendering."""

    def test_sections_by_type(self):
        from parley.models.analysis import BehavioralAssessment, PersonAnalysis, PersonConcern
        from parley.models.db_models import ProfileNoteType
        from parley.services.reconciliation import build_profile_notes

        analysis = PersonAnalysis(
            person_id="p1",
            assessment=BehavioralAssessment(summary="Responsive", cooperation_level="high"),
            positive_behaviors=["Replies quickly"],
            concerning_behaviors=["Late changes"],
            strategies=["Confirm in writing"],
            concerns=[PersonConcern(type="reliability", description="Missed pickup", evidence=["m2"], severity="high")],
        )
        notes = build_profile_notes(analysis, as_of="2024-03-01")

        observation = notes[ProfileNoteType.OBSERVATION]
        assert observation.startswith("## Behavioral Assessment (2024-03-01)\n\nResponsive")
        assert "- Cooperation: high" in observation
        assert "**Positive Behaviors:**\n- Replies quickly" in observation
        assert "**RELIABILITY** (Severity: high)\n\nMissed pickup\n\nEvidence: m2" in observation
        assert notes[ProfileNoteType.PATTERN] == "**Concerning Behaviors:**\n- Late changes"
        assert notes[ProfileNoteType.STRATEGY] == "**Communication Strategies:**\n- Confirm in writing"

    def test_empty_analysis_has_no_notes(self):
        from parley.models.analysis import PersonAnalysis
        from parley.services.reconciliation import build_profile_notes

        assert build_profile_notes(PersonAnalysis(person_id="p1")) == {}

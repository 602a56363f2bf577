"""
API tests using FastAPI's TestClient against the in-memory session.

Covers:
- /imports/preview and /imports/commit
- /conversations/{id}/analysis, /analyze, /analysis-request
- resolution-state listings
- /agreement-items chain endpoints
"""
import pytest


UPLOAD = {
    "title": "Weekend planning",
    "participants": ["Alice Carter", "Bob Dunn"],
    "messages": [
        {"sender_name": "Alice Carter", "receiver_name": "Bob Dunn",
         "sent_at": "2024-06-01T09:00:00Z", "body": "Are you still okay to take the kids on Saturday?"},
        {"sender_name": "Bob Dunn", "receiver_name": "Alice Carter",
         "sent_at": "2024-06-01T09:04:00Z", "body": "Yes, I will pick them up from school at three."},
    ],
}


class FakeAnalysisClient:
    def __init__(self, response):
        self.response = response

    def analyze(self, request):
        return self.response


@pytest.fixture
def fake_analysis():
    return FakeAnalysisClient({
        "conversationAnalysis": {"summary": "Friendly planning", "overallTone": "cooperative"},
        "conversationState": {"status": "resolved"},
    })


@pytest.fixture
def client(db, fake_analysis):
    from fastapi.testclient import TestClient
    from parley.database import get_db
    from parley.main import app
    from parley.routers.conversations import get_analysis_client

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_analysis_client] = lambda: fake_analysis
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# ROOT
# =============================================================================

class TestRoot:
    def test_root_and_health(self, client):
        assert client.get("/").json()["name"] == "Parley"
        assert client.get("/health").json() == {"status": "healthy"}


# =============================================================================
# IMPORTS
# =============================================================================

class TestImportRoutes:
    """Tests for the import preview/commit flow."""

    def test_preview_writes_nothing(self, client, db, alice, bob):
        from parley.models.db_models import ConversationDB

        response = client.post("/imports/preview", json=UPLOAD)

        assert response.status_code == 200
        body = response.json()
        assert body["message_count"] == 2
        assert body["requires_decision"] is False
        assert {r["action"] for r in body["resolutions"]} == {"link"}
        assert body["signals"]["requires_decision"] is False
        assert db.query(ConversationDB).count() == 0

    def test_commit_then_reupload_detects_continuity(self, client, alice, bob):
        created = client.post("/imports/commit", json={"conversation": UPLOAD, "decision": "create_separate"})
        assert created.status_code == 200
        conversation_id = created.json()["conversation_id"]
        assert created.json()["added_count"] == 2

        preview = client.post("/imports/preview", json=UPLOAD).json()
        assert preview["requires_decision"] is True
        assert preview["primary_conversation_id"] == conversation_id
        assert preview["first_sentence_match"]["conversation_id"] == conversation_id
        assert preview["signals"]["strategies_agree"] is True
        assert preview["signals"]["duplicate_candidates"] == 1

        appended = client.post("/imports/commit", json={"conversation": UPLOAD, "decision": "append"})
        assert appended.status_code == 200
        assert appended.json()["conversation_id"] == conversation_id
        assert appended.json()["added_count"] == 0

    def test_cancel(self, client, db):
        from parley.models.db_models import PersonDB

        response = client.post("/imports/commit", json={"conversation": UPLOAD, "decision": "cancel"})
        assert response.status_code == 200
        assert response.json()["conversation_id"] is None
        assert db.query(PersonDB).count() == 0

    def test_invalid_decision(self, client):
        response = client.post("/imports/commit", json={"conversation": UPLOAD, "decision": "merge"})
        assert response.status_code == 400

    def test_invalid_direction(self, client):
        upload = dict(UPLOAD, messages=[dict(UPLOAD["messages"][0], direction="sideways")])
        assert client.post("/imports/preview", json=upload).status_code == 400

    def test_append_without_target(self, client):
        response = client.post("/imports/commit", json={"conversation": UPLOAD, "decision": "append"})
        assert response.status_code == 400


# =============================================================================
# ANALYSIS
# =============================================================================

class TestAnalysisRoutes:
    """Tests for analysis submission and the collaborator-backed endpoint."""

    def test_submit_empty_analysis(self, client, pickup_conversation):
        response = client.post(f"/conversations/{pickup_conversation.id}/analysis", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["validation"]["is_valid"] is False
        assert body["processing"]["sections_processed"] == ["analysis"]
        assert body["summary"]["conversation_tone"] == "neutral"

    def test_submit_unknown_conversation(self, client):
        assert client.post("/conversations/missing/analysis", json={}).status_code == 404

    def test_analyze_uses_collaborator(self, client, db, pickup_conversation):
        from parley.models.db_models import ConversationDB, ConversationStatus

        response = client.post(f"/conversations/{pickup_conversation.id}/analyze", json={"is_reanalysis": True})

        assert response.status_code == 200
        assert response.json()["processing"]["success"] is True
        db.expire_all()
        assert db.get(ConversationDB, pickup_conversation.id).status == ConversationStatus.RESOLVED

    def test_analyze_runs_off_the_event_loop(self):
        """The blocking collaborator call must not be made from an async handler."""
        import inspect
        from parley.routers.conversations import analyze_conversation

        assert inspect.iscoroutinefunction(analyze_conversation) is False

    def test_analyze_unknown_conversation(self, client):
        assert client.post("/conversations/missing/analyze").status_code == 404

    def test_analysis_request(self, client, pickup_conversation):
        response = client.get(
            f"/conversations/{pickup_conversation.id}/analysis-request",
            params={"user_guidance": "Focus on times"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["conversationId"] == pickup_conversation.id
        assert len(body["messages"]) == 3
        assert body["userGuidance"] == "Focus on times"


# =============================================================================
# RESOLUTION STATE
# =============================================================================

class TestResolutionStateRoutes:
    """Tests for open / stale / awaiting listings."""

    def test_open(self, client, pickup_conversation):
        body = client.get("/conversations/open").json()
        assert body["total"] == 1
        assert body["conversations"][0]["id"] == pickup_conversation.id

    def test_stale(self, client, pickup_conversation):
        body = client.get("/conversations/stale", params={"days": 0}).json()
        assert [c["id"] for c in body["conversations"]] == [pickup_conversation.id]
        assert client.get("/conversations/stale", params={"days": -1}).status_code == 400

    def test_awaiting(self, client, db, bob, pickup_conversation):
        pickup_conversation.pending_responder_id = bob.id
        db.commit()

        body = client.get(f"/people/{bob.id}/awaiting").json()
        assert body["total"] == 1
        assert client.get("/people/missing/awaiting").status_code == 404


# =============================================================================
# AGREEMENT ITEMS
# =============================================================================

class TestAgreementRoutes:
    """Tests for the override chain endpoints."""

    @pytest.fixture
    def items(self, db, pickup_conversation):
        from parley.services.reconciliation import AgreementChainService

        service = AgreementChainService(db)
        agreement = service.get_or_create_conversation_agreement()
        first = service.create_item_from_conversation(
            agreement.id, "Pickup", "Saturday 10am", "Saturday 10am", pickup_conversation.id,
        )
        second = service.create_item_from_conversation(
            agreement.id, "Pickup", "Saturday 11am", "Saturday 11am", pickup_conversation.id,
            overrides_item_id=first.id,
        )
        db.commit()
        return first, second

    def test_chain_and_effective(self, client, items):
        first, second = items

        chain = client.get(f"/agreement-items/{second.id}/chain").json()["chain"]
        assert [(c["depth"], c["id"]) for c in chain] == [(-1, first.id), (0, second.id)]

        assert client.get(f"/agreement-items/{first.id}/effective").json()["id"] == second.id
        assert client.get("/agreement-items/effective", params={"topic": "pickup"}).json()["id"] == second.id
        assert client.get("/agreement-items/effective", params={"topic": "nothing"}).status_code == 404

    def test_override_status(self, client, items):
        first, second = items

        response = client.patch(f"/agreement-items/{second.id}/override-status", json={"status": "withdrawn"})
        assert response.status_code == 200
        assert response.json()["override_status"] == "withdrawn"
        assert client.get(f"/agreement-items/{first.id}/effective").json()["id"] == first.id

        bad = client.patch(f"/agreement-items/{second.id}/override-status", json={"status": "gone"})
        assert bad.status_code == 400

    def test_missing_item(self, client):
        assert client.get("/agreement-items/missing/chain").status_code == 404
        response = client.patch("/agreement-items/missing/override-status", json={"status": "active"})
        assert response.status_code == 404

"""
Tests for the agreement override chain.

Chain used throughout:  B  <-overrides-  C  <-overrides-  D
"""
import pytest


@pytest.fixture
def chain(db, pickup_conversation):
    """Returns (service, B, C, D) all on topic 'Weekend pickup'."""
    from parley.services.reconciliation import AgreementChainService

    service = AgreementChainService(db)
    agreement = service.get_or_create_conversation_agreement()

    def item(summary, overrides=None):
        return service.create_item_from_conversation(
            agreement_id=agreement.id,
            topic="Weekend pickup",
            summary=summary,
            full_text=summary,
            source_conversation_id=pickup_conversation.id,
            overrides_item_id=overrides.id if overrides else None,
        )

    b = item("Saturday 10am")
    c = item("Saturday 11am", overrides=b)
    d = item("Sunday 10am", overrides=c)
    db.commit()
    return service, b, c, d


# =============================================================================
# TRAVERSAL
# =============================================================================

class TestOverrideChain:
    """Tests for chain traversal."""

    def test_effective_item_walks_to_latest(self, chain):
        service, b, c, d = chain

        assert service.get_effective_item(b.id).id == d.id
        assert service.get_effective_item(c.id).id == d.id
        assert service.get_effective_item(d.id).id == d.id

    def test_chain_depths(self, chain):
        service, b, c, d = chain

        result = service.get_override_chain(c.id)
        assert [(depth, item.id) for depth, item in result] == [(-1, b.id), (0, c.id), (1, d.id)]

        from_root = service.get_override_chain(b.id)
        assert [depth for depth, _ in from_root] == [0, 1, 2]

    def test_override_status_set_only_when_overriding(self, chain):
        from parley.models.db_models import OverrideStatus

        _, b, c, d = chain
        assert b.override_status is None
        assert c.override_status == OverrideStatus.ACTIVE
        assert d.override_status == OverrideStatus.ACTIVE

    def test_disputed_successor_does_not_take_effect(self, db, chain):
        service, b, c, d = chain

        service.update_override_status(d.id, "disputed")
        db.commit()

        assert service.get_effective_item(b.id).id == c.id
        assert service.get_effective_item_for_topic("weekend PICKUP").id == c.id
        # History is kept
        assert [item.id for _, item in service.get_override_chain(b.id)] == [b.id, c.id, d.id]

    def test_withdrawn_middle_link_stops_walk(self, db, chain):
        service, b, c, d = chain

        service.update_override_status(c.id, "withdrawn")
        db.commit()

        assert service.get_effective_item(b.id).id == b.id

    def test_effective_item_for_topic(self, chain):
        service, _, _, d = chain

        assert service.get_effective_item_for_topic("Weekend pickup").id == d.id
        assert service.get_effective_item_for_topic("Holidays") is None
        assert service.get_effective_item_for_topic("  ") is None

    def test_cycle_detected(self, db, chain):
        from parley.services.reconciliation import AgreementChainError

        service, b, c, d = chain
        b.overrides_item_id = d.id
        db.commit()

        with pytest.raises(AgreementChainError):
            service.get_override_chain(c.id)
        with pytest.raises(AgreementChainError):
            service.get_effective_item(b.id)


# =============================================================================
# WRITES
# =============================================================================

class TestChainWrites:
    """Tests for item creation and status updates."""

    def test_container_reused(self, db):
        from parley.services.reconciliation import AgreementChainService

        service = AgreementChainService(db)
        first = service.get_or_create_conversation_agreement()
        db.commit()
        assert service.get_or_create_conversation_agreement().id == first.id

    def test_override_of_missing_item_rejected(self, db):
        from parley.services.reconciliation import AgreementChainService, AgreementItemNotFoundError

        service = AgreementChainService(db)
        agreement = service.get_or_create_conversation_agreement()
        with pytest.raises(AgreementItemNotFoundError):
            service.create_item_from_conversation(
                agreement_id=agreement.id, topic="t", summary="s", full_text="s",
                source_conversation_id=None, overrides_item_id="missing",
            )

    def test_invalid_status_rejected(self, chain):
        from parley.services.reconciliation import AgreementChainError

        service, _, c, _ = chain
        with pytest.raises(AgreementChainError):
            service.update_override_status(c.id, "superseded")

    def test_unknown_item(self, db):
        from parley.services.reconciliation import AgreementChainService, AgreementItemNotFoundError

        with pytest.raises(AgreementItemNotFoundError):
            AgreementChainService(db).get_override_chain("missing")


# =============================================================================
# DETECTED AGREEMENTS
# =============================================================================

class TestApplyDetectedAgreement:
    """Tests for AgreementChainService.apply_detected_agreement."""

    def test_new_topic_item_has_no_override(self, db, pickup_conversation):
        from parley.models.analysis import DetectedAgreement
        from parley.services.reconciliation import AgreementChainService

        item, created = AgreementChainService(db).apply_detected_agreement(
            pickup_conversation.id, DetectedAgreement(topic="Dinner", summary="Sundays at six"),
        )
        assert created is True
        assert item.overrides_item_id is None
        assert item.override_status is None
        assert item.full_text == "Sundays at six"

    def test_later_conversation_overrides_effective_item(self, db, alice, bob, chain, make_conversation):
        from datetime import datetime
        from parley.models.analysis import DetectedAgreement
        from parley.models.db_models import OverrideStatus

        service, _, _, d = chain
        later = make_conversation([alice, bob], [(alice, datetime(2024, 4, 1, 9, 0), "New plan for weekends.")])

        item, created = service.apply_detected_agreement(
            later.id, DetectedAgreement(topic="weekend pickup", summary="Sunday noon", full_text="Sunday noon"),
        )
        db.commit()

        assert created is True
        assert item.overrides_item_id == d.id
        assert item.override_status == OverrideStatus.ACTIVE
        assert service.get_effective_item_for_topic("Weekend pickup").id == item.id

    def test_potential_override_topics(self, db, alice, bob, chain, make_conversation):
        from datetime import datetime
        from parley.models.analysis import DetectedAgreement

        service, _, _, d = chain
        later = make_conversation([alice, bob], [(alice, datetime(2024, 4, 2, 9, 0), "Changing things again.")])

        item, _ = service.apply_detected_agreement(later.id, DetectedAgreement(
            topic="Saturday handoff", summary="Handoff at the library",
            potential_override_topics=["Weekend pickup"],
        ))
        assert item.overrides_item_id == d.id

    def test_reanalysis_updates_same_item(self, db, pickup_conversation):
        from parley.models.analysis import DetectedAgreement
        from parley.models.db_models import AgreementItemDB
        from parley.services.reconciliation import AgreementChainService

        service = AgreementChainService(db)
        first, created_first = service.apply_detected_agreement(
            pickup_conversation.id, DetectedAgreement(topic="Dinner", summary="Sundays at six"),
        )
        db.commit()
        second, created_second = service.apply_detected_agreement(
            pickup_conversation.id,
            DetectedAgreement(topic="Dinner", summary="Sundays at seven", is_temporary=True, condition_text="Until June"),
        )
        db.commit()

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert second.summary == "Sundays at seven"
        assert second.contingency_condition == "Until June"
        assert second.overrides_item_id is None
        assert db.query(AgreementItemDB).count() == 1

"""
Agreement Override Chain

An AgreementItem may point at the item it supersedes (overrides_item_id).
Superseded items are kept; the chain is the history of a topic.

    B  <-overrides-  C  <-overrides-  D

get_override_chain(C) → [(-1, B), (0, C), (1, D)]
get_effective_item(B) → D   (walks successors whose override_status is
                             null or active; disputed/withdrawn successors
                             do not take effect)

Items detected from conversations live under a single "Conversation
Agreements" container agreement.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models.analysis import DetectedAgreement
from ...models.db_models import AgreementDB, AgreementItemDB, MessageDB, OverrideStatus

logger = logging.getLogger(__name__)

CONVERSATION_AGREEMENT_TITLE = "Conversation Agreements"
CONVERSATION_AGREEMENT_DESCRIPTION = "Informal agreements detected from conversation analysis"


class AgreementChainError(Exception):
    """Raised for invalid override chain operations."""
    pass


class AgreementItemNotFoundError(AgreementChainError):
    """Raised when an agreement item id does not exist."""
    pass


def item_to_dict(item: AgreementItemDB) -> Dict[str, object]:
    return {
        "id": item.id,
        "agreement_id": item.agreement_id,
        "topic": item.topic,
        "summary": item.summary,
        "full_text": item.full_text,
        "is_active": item.is_active,
        "overrides_item_id": item.overrides_item_id,
        "override_status": item.override_status.value if item.override_status else None,
        "contingency_condition": item.contingency_condition,
        "source_conversation_id": item.source_conversation_id,
        "source_message_id": item.source_message_id,
        "detected_at": item.detected_at.isoformat() if item.detected_at else None,
    }


class AgreementChainService:
    """
    Override chain queries and writes.

    Usage:
        service = AgreementChainService(db)
        effective = service.get_effective_item(item_id)
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # CONTAINER & ITEMS
    # =========================================================================

    def get_or_create_conversation_agreement(self) -> AgreementDB:
        agreement = (
            self.db.query(AgreementDB)
            .filter(AgreementDB.title == CONVERSATION_AGREEMENT_TITLE, AgreementDB.source_type == "other")
            .order_by(AgreementDB.created_at.asc())
            .first()
        )
        if agreement is not None:
            return agreement

        agreement = AgreementDB(
            id=str(uuid4()),
            title=CONVERSATION_AGREEMENT_TITLE,
            description=CONVERSATION_AGREEMENT_DESCRIPTION,
            source_type="other",
            status="agreed",
        )
        self.db.add(agreement)
        self.db.flush()
        logger.info(f"Created '{CONVERSATION_AGREEMENT_TITLE}' container {agreement.id}")
        return agreement

    def get_item(self, item_id: str) -> AgreementItemDB:
        item = self.db.get(AgreementItemDB, item_id)
        if item is None:
            raise AgreementItemNotFoundError(f"Agreement item not found: {item_id}")
        return item

    def create_item_from_conversation(
        self,
        agreement_id: str,
        topic: str,
        summary: str,
        full_text: str,
        source_conversation_id: Optional[str],
        overrides_item_id: Optional[str] = None,
        contingency_condition: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> AgreementItemDB:
        """Create an item; override_status is 'active' only when it overrides something."""
        if overrides_item_id:
            self.get_item(overrides_item_id)

        item = AgreementItemDB(
            id=str(uuid4()),
            agreement_id=agreement_id,
            topic=topic,
            summary=summary,
            full_text=full_text or summary or "",
            is_active=True,
            overrides_item_id=overrides_item_id,
            override_status=OverrideStatus.ACTIVE if overrides_item_id else None,
            contingency_condition=contingency_condition,
            source_conversation_id=source_conversation_id,
            source_message_id=source_message_id,
            detected_at=datetime.utcnow(),
        )
        self.db.add(item)
        self.db.flush()
        return item

    def update_override_status(self, item_id: str, status: str) -> AgreementItemDB:
        item = self.get_item(item_id)
        try:
            item.override_status = OverrideStatus(status)
        except ValueError:
            raise AgreementChainError(f"Invalid override status: {status}")
        self.db.flush()
        return item

    # =========================================================================
    # CHAIN TRAVERSAL
    # =========================================================================

    def _successors(self, item_id: str, effective_only: bool = False) -> List[AgreementItemDB]:
        query = self.db.query(AgreementItemDB).filter(AgreementItemDB.overrides_item_id == item_id)
        if effective_only:
            query = query.filter(or_(
                AgreementItemDB.override_status.is_(None),
                AgreementItemDB.override_status == OverrideStatus.ACTIVE,
            ))
        return query.order_by(AgreementItemDB.detected_at.asc(), AgreementItemDB.created_at.asc()).all()

    def _ancestors(self, item: AgreementItemDB) -> List[AgreementItemDB]:
        """Items superseded by item, nearest first."""
        ancestors: List[AgreementItemDB] = []
        seen: Set[str] = {item.id}
        current = item
        while current.overrides_item_id:
            if current.overrides_item_id in seen:
                raise AgreementChainError(f"Cyclic override chain at item {current.id}")
            parent = self.db.get(AgreementItemDB, current.overrides_item_id)
            if parent is None:
                logger.warning(f"Item {current.id} overrides missing item {current.overrides_item_id}")
                break
            seen.add(parent.id)
            ancestors.append(parent)
            current = parent
        return ancestors

    def get_override_chain(self, item_id: str) -> List[Tuple[int, AgreementItemDB]]:
        """
        Full chain around an item as (depth, item), ordered by depth.

        Negative depth = superseded ancestors, 0 = the item, positive = successors.
        """
        item = self.get_item(item_id)
        chain: List[Tuple[int, AgreementItemDB]] = [
            (-(i + 1), ancestor) for i, ancestor in enumerate(self._ancestors(item))
        ]
        chain.append((0, item))

        seen = {entry.id for _, entry in chain}
        frontier = [item]
        depth = 0
        while frontier:
            depth += 1
            next_frontier = []
            for current in frontier:
                for successor in self._successors(current.id):
                    if successor.id in seen:
                        raise AgreementChainError(f"Cyclic override chain at item {successor.id}")
                    seen.add(successor.id)
                    chain.append((depth, successor))
                    next_frontier.append(successor)
            frontier = next_frontier

        chain.sort(key=lambda entry: entry[0])
        return chain

    def get_effective_item(self, item_id: str, exclude_ids: Iterable[str] = ()) -> AgreementItemDB:
        """Walk forward to the item with no effective successor (latest successor wins on branches)."""
        excluded = set(exclude_ids)
        current = self.get_item(item_id)
        seen = {current.id}

        while True:
            successors = [s for s in self._successors(current.id, effective_only=True) if s.id not in excluded]
            if not successors:
                return current
            successor = successors[-1]
            if successor.id in seen:
                raise AgreementChainError(f"Cyclic override chain at item {successor.id}")
            seen.add(successor.id)
            current = successor

    def get_effective_item_for_topic(
        self,
        topic: str,
        exclude_ids: Iterable[str] = (),
    ) -> Optional[AgreementItemDB]:
        """Currently effective item for a topic (case-insensitive), or None."""
        topic = (topic or "").strip()
        if not topic:
            return None
        excluded = set(exclude_ids)

        items = (
            self.db.query(AgreementItemDB)
            .filter(func.lower(AgreementItemDB.topic) == topic.lower())
            .filter(AgreementItemDB.is_active.is_(True))
            .all()
        )
        effective: Dict[str, AgreementItemDB] = {}
        for item in items:
            if item.id in excluded:
                continue
            # Disputed/withdrawn overrides never take effect, not even from themselves
            if item.override_status in (OverrideStatus.DISPUTED, OverrideStatus.WITHDRAWN):
                continue
            resolved = self.get_effective_item(item.id, exclude_ids=excluded)
            effective[resolved.id] = resolved

        if not effective:
            return None
        return max(
            effective.values(),
            key=lambda i: (i.detected_at or i.created_at or datetime.min, i.created_at or datetime.min),
        )

    # =========================================================================
    # DETECTED AGREEMENTS
    # =========================================================================

    def find_item_for_conversation_topic(self, conversation_id: str, topic: str) -> Optional[AgreementItemDB]:
        return (
            self.db.query(AgreementItemDB)
            .filter(AgreementItemDB.source_conversation_id == conversation_id)
            .filter(func.lower(AgreementItemDB.topic) == topic.strip().lower())
            .order_by(AgreementItemDB.created_at.asc())
            .first()
        )

    def _resolve_override_target(
        self,
        detected: DetectedAgreement,
        existing: Optional[AgreementItemDB],
    ) -> Optional[AgreementItemDB]:
        exclude = [existing.id] if existing is not None else []

        if detected.overrides_item_id:
            target = self.db.get(AgreementItemDB, detected.overrides_item_id)
            if target is not None and target.id not in exclude:
                return target
            logger.warning(f"Detected agreement references unknown override target {detected.overrides_item_id}")

        for topic in [detected.topic] + list(detected.potential_override_topics):
            target = self.get_effective_item_for_topic(topic, exclude_ids=exclude)
            if target is not None:
                return target
        return None

    def _first_stored_message(self, message_ids: List[str]) -> Optional[str]:
        if not message_ids:
            return None
        stored = {row[0] for row in self.db.query(MessageDB.id).filter(MessageDB.id.in_(message_ids)).all()}
        return next((m for m in message_ids if m in stored), None)

    def apply_detected_agreement(
        self,
        conversation_id: str,
        detected: DetectedAgreement,
    ) -> Tuple[AgreementItemDB, bool]:
        """
        Create or refresh the item detected in a conversation. Returns (item, created).

        Re-analysis of the same conversation updates the item it created for the
        same topic instead of adding another.
        """
        existing = self.find_item_for_conversation_topic(conversation_id, detected.topic)
        target = self._resolve_override_target(detected, existing)
        condition = detected.condition_text if (detected.is_temporary or detected.condition_text) else None
        source_message_id = self._first_stored_message(detected.message_ids)

        if existing is None:
            agreement = self.get_or_create_conversation_agreement()
            item = self.create_item_from_conversation(
                agreement_id=agreement.id,
                topic=detected.topic,
                summary=detected.summary,
                full_text=detected.full_text,
                source_conversation_id=conversation_id,
                overrides_item_id=target.id if target else None,
                contingency_condition=condition,
                source_message_id=source_message_id,
            )
            if target is not None:
                logger.info(f"Agreement item {item.id} ({detected.topic}) overrides {target.id}")
            return item, True

        existing.summary = detected.summary
        existing.full_text = detected.full_text or detected.summary
        existing.contingency_condition = condition
        existing.source_message_id = source_message_id or existing.source_message_id

        if target is not None and target.id != existing.overrides_item_id:
            if existing.id in {a.id for a in self._ancestors(target)}:
                logger.warning(f"Ignoring override of {target.id} by {existing.id}: would create a cycle")
            else:
                existing.overrides_item_id = target.id
                existing.override_status = existing.override_status or OverrideStatus.ACTIVE

        self.db.flush()
        return existing, False

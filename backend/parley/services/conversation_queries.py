"""
Conversation resolution-state queries.

Read-only views over conversation status and pending responders.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import STALE_CONVERSATION_DAYS
from ..models.db_models import ConversationDB, ConversationStatus, PersonDB


def conversation_to_dict(conversation: ConversationDB) -> Dict[str, Any]:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "source_type": conversation.source_type,
        "started_at": conversation.started_at.isoformat() if conversation.started_at else None,
        "ended_at": conversation.ended_at.isoformat() if conversation.ended_at else None,
        "preview_text": conversation.preview_text or "",
        "participant_ids": conversation.participant_ids,
        "status": conversation.status.value if conversation.status else ConversationStatus.OPEN.value,
        "pending_responder_id": conversation.pending_responder_id,
        "amendment_history": list(conversation.amendment_history or []),
    }


class ConversationQueryService:
    def __init__(self, db: Session):
        self.db = db

    def _open(self):
        last_activity = func.coalesce(ConversationDB.ended_at, ConversationDB.started_at)
        return (
            self.db.query(ConversationDB)
            .filter(ConversationDB.status == ConversationStatus.OPEN)
            .order_by(last_activity.asc())
        )

    def get_open_conversations(self) -> List[ConversationDB]:
        """Open conversations, longest-waiting first."""
        return self._open().all()

    def get_stale_conversations(
        self,
        days_threshold: int = STALE_CONVERSATION_DAYS,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Open conversations with no activity for more than days_threshold days."""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=days_threshold)
        last_activity = func.coalesce(ConversationDB.ended_at, ConversationDB.started_at)

        conversations = self._open().filter(last_activity < cutoff).all()

        responder_ids = {c.pending_responder_id for c in conversations if c.pending_responder_id}
        names = {}
        if responder_ids:
            names = {
                p.id: p.full_name
                for p in self.db.query(PersonDB).filter(PersonDB.id.in_(list(responder_ids))).all()
            }

        stale = []
        for conversation in conversations:
            last = conversation.ended_at or conversation.started_at or now
            entry = conversation_to_dict(conversation)
            entry["days_since_last_message"] = (now - last).days
            entry["pending_responder_name"] = names.get(conversation.pending_responder_id)
            stale.append(entry)
        return stale

    def get_conversations_awaiting_person(self, person_id: str) -> List[ConversationDB]:
        """Open conversations waiting on person_id to respond."""
        return self._open().filter(ConversationDB.pending_responder_id == person_id).all()

"""
Builds the request body sent to the analysis collaborator.

Field names are the collaborator's wire format (camelCase).
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...models.db_models import (
    AgreementItemDB,
    ConversationDB,
    IssueDB,
    MessageDB,
    PersonDB,
    PersonRole,
)


def _enum_value(value) -> Optional[str]:
    return getattr(value, "value", value)


def _iso(value) -> str:
    return value.isoformat() if value is not None else ""


def build_analysis_request(
    db: Session,
    conversation_id: str,
    is_reanalysis: bool = False,
    user_guidance: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Assemble {conversationId, messages, participants, agreementItems,
    existingIssues, mePersonId, isReanalysis, userGuidance?} for one conversation.

    Raises LookupError if the conversation does not exist.
    """
    conversation = db.get(ConversationDB, conversation_id)
    if conversation is None:
        raise LookupError(f"Conversation not found: {conversation_id}")

    messages = (
        db.query(MessageDB)
        .filter(MessageDB.conversation_id == conversation_id)
        .order_by(MessageDB.sent_at.asc())
        .all()
    )

    participant_ids = list(conversation.participant_ids)
    people = db.query(PersonDB).all()
    people_by_id = {p.id: p for p in people}

    participants: List[Dict[str, Any]] = []
    for person_id in participant_ids:
        person = people_by_id.get(person_id)
        participants.append({
            "id": person_id,
            "fullName": person.full_name if person else "Unknown",
            "role": _enum_value(person.role) if person else PersonRole.OTHER.value,
            "roleContext": person.role_context if person else None,
        })

    agreement_items = (
        db.query(AgreementItemDB)
        .filter(AgreementItemDB.is_active.is_(True))
        .order_by(AgreementItemDB.created_at.asc())
        .all()
    )
    issues = db.query(IssueDB).order_by(IssueDB.created_at.asc()).all()

    me = next((p for p in people if p.role == PersonRole.ME), None)
    me_person_id = me.id if me else (participant_ids[0] if participant_ids else "")

    request = {
        "conversationId": conversation_id,
        "messages": [
            {
                "id": m.id,
                "senderId": m.sender_id,
                "receiverId": m.receiver_id,
                "rawText": m.raw_text,
                "sentAt": _iso(m.sent_at),
            }
            for m in messages
        ],
        "participants": participants,
        "agreementItems": [
            {
                "id": item.id,
                "topic": item.topic,
                "fullText": item.full_text,
                "summary": item.summary or (item.full_text or "")[:100],
            }
            for item in agreement_items
        ],
        "existingIssues": [
            {
                "id": issue.id,
                "title": issue.title,
                "description": issue.description or "",
                "status": _enum_value(issue.status),
                "priority": _enum_value(issue.priority),
            }
            for issue in issues
        ],
        "mePersonId": me_person_id,
        "isReanalysis": bool(is_reanalysis),
    }
    if user_guidance:
        request["userGuidance"] = user_guidance
    return request

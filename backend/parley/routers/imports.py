"""
Parley - Import API Router

Two-step import flow used by the import wizard:
1. POST /imports/preview  - dedup report, name resolutions, continuity signals (no writes)
2. POST /imports/commit   - apply the user's append / create_separate / cancel decision

The server keeps no state between the two calls; commit re-prepares the plan
from the same parsed conversation.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import MessageDirection
from ..models.ingestion import (
    ContinuityDecision,
    ImportPlan,
    NameMatchResult,
    ParsedConversation,
    ParsedMessage,
)
from ..services.ingestion import ImportService, ImportServiceError


router = APIRouter(prefix="/imports", tags=["imports"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ParsedMessageModel(BaseModel):
    sender_name: str
    receiver_name: str = ""
    sent_at: datetime
    body: str
    direction: str = "inbound"


class ParsedConversationModel(BaseModel):
    """Output of an external parser."""
    title: str = "Imported Conversation"
    participants: List[str] = []
    messages: List[ParsedMessageModel] = []
    source_type: Optional[str] = None


class ImportCommitRequest(BaseModel):
    conversation: ParsedConversationModel
    decision: str  # append, create_separate, cancel
    target_conversation_id: Optional[str] = None
    identity_choices: Dict[str, Optional[str]] = {}


# =============================================================================
# HELPERS
# =============================================================================

def _to_parsed(model: ParsedConversationModel) -> ParsedConversation:
    messages = []
    for m in model.messages:
        try:
            direction = MessageDirection(m.direction.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid direction: {m.direction}")
        messages.append(ParsedMessage(
            sender_name=m.sender_name,
            receiver_name=m.receiver_name,
            sent_at=m.sent_at,
            body=m.body,
            direction=direction,
        ))
    return ParsedConversation(
        title=model.title,
        participants=set(model.participants),
        messages=messages,
        source_type=model.source_type,
    )


def _match_dict(match: Optional[NameMatchResult]) -> Optional[Dict[str, Any]]:
    if match is None:
        return None
    return {
        "person_id": match.person_id,
        "person_name": match.person_name,
        "match_score": round(match.match_score, 4),
        "match_type": match.match_type.value,
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def plan_to_dict(plan: ImportPlan) -> Dict[str, Any]:
    match = plan.first_sentence_match
    return {
        "title": plan.title,
        "message_count": len(plan.messages),
        "started_at": _iso(plan.started_at),
        "ended_at": _iso(plan.ended_at),
        "merged_fragment_count": plan.merged_fragment_count,
        "warnings": plan.warnings,
        "resolutions": [
            {
                "name": r.name,
                "action": r.action.value,
                "person_id": r.person_id,
                "match": _match_dict(r.match),
                "candidates": [_match_dict(c) for c in r.candidates],
            }
            for r in plan.resolutions
        ],
        "hash_candidates": [
            {
                "conversation_id": c.conversation_id,
                "title": c.title,
                "match_type": c.match_type.value,
                "duplicate_count": c.duplicate_count,
                "existing_message_count": c.existing_message_count,
                "started_at": _iso(c.started_at),
                "ended_at": _iso(c.ended_at),
            }
            for c in plan.hash_candidates
        ],
        "primary_conversation_id": plan.primary_candidate.conversation_id if plan.primary_candidate else None,
        "first_sentence": plan.first_sentence,
        "first_sentence_match": {
            "conversation_id": match.conversation_id,
            "title": match.title,
            "matching_message_id": match.matching_message_id,
            "existing_message_count": match.existing_message_count,
            "last_message_preview": (match.last_message.raw_text[:100] if match.last_message else None),
        } if match else None,
        "requires_decision": plan.requires_decision,
    }


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/preview")
async def preview_import(
    request: ParsedConversationModel,
    db: Session = Depends(get_db),
):
    """Analyse a parsed conversation for duplicates and continuity. Writes nothing."""
    service = ImportService(db)
    plan = service.prepare_import(_to_parsed(request))
    body = plan_to_dict(plan)
    body["signals"] = service.detector.summarize(plan.hash_candidates, plan.first_sentence_match)
    return body


@router.post("/commit")
async def commit_import(
    request: ImportCommitRequest,
    db: Session = Depends(get_db),
):
    """Apply the user's continuity decision."""
    try:
        decision = ContinuityDecision(request.decision)
    except ValueError:
        valid = [d.value for d in ContinuityDecision]
        raise HTTPException(status_code=400, detail=f"Invalid decision. Must be one of: {valid}")

    service = ImportService(db)
    plan = service.prepare_import(_to_parsed(request.conversation))

    try:
        outcome = service.commit_import(
            plan,
            decision,
            target_conversation_id=request.target_conversation_id,
            identity_choices=request.identity_choices,
        )
    except ImportServiceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "decision": outcome.decision.value,
        "conversation_id": outcome.conversation_id,
        "added_count": outcome.added_count,
        "skipped_count": outcome.skipped_count,
        "duplicate_count": outcome.duplicate_count,
        "method": outcome.method,
        "created_person_ids": outcome.created_person_ids,
        "person_ids_by_name": outcome.person_ids_by_name,
    }

"""
Parley - Conversation API Router

Analysis ingestion and resolution-state views:
- POST /conversations/{id}/analysis          untrusted analysis JSON in, reconciliation report out
- POST /conversations/{id}/analyze           run the analysis collaborator, then reconcile
- GET  /conversations/{id}/analysis-request  request body for the collaborator
- GET  /conversations/open | /conversations/stale
- GET  /people/{id}/awaiting
"""
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import STALE_CONVERSATION_DAYS
from ..database import get_db
from ..models.db_models import PersonDB
from ..services.analysis import (
    AnalysisClient,
    AnalysisPipeline,
    HttpAnalysisClient,
    PipelineOutcome,
    build_analysis_request,
)
from ..services.conversation_queries import ConversationQueryService, conversation_to_dict
from ..services.reconciliation import ReconciliationError


router = APIRouter(tags=["conversations"])


def get_analysis_client() -> AnalysisClient:
    """Dependency - overridden in tests."""
    return HttpAnalysisClient()


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class AnalyzeRequest(BaseModel):
    is_reanalysis: bool = False
    user_guidance: Optional[str] = None


def _outcome_to_dict(outcome: PipelineOutcome) -> dict:
    validation = outcome.validation
    return {
        "validation": {
            "is_valid": validation.is_valid,
            "errors": validation.errors,
            "warnings": validation.warnings,
        } if validation else None,
        "processing": outcome.processing.to_dict(),
        "summary": outcome.summary,
    }


# =============================================================================
# ANALYSIS
# =============================================================================

@router.post("/conversations/{conversation_id}/analysis")
async def submit_analysis(
    conversation_id: str,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    client: AnalysisClient = Depends(get_analysis_client),
):
    """Sanitize an analysis result produced elsewhere and merge it into stored state."""
    try:
        outcome = AnalysisPipeline(db, client).apply_result(conversation_id, payload)
    except ReconciliationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _outcome_to_dict(outcome)


@router.post("/conversations/{conversation_id}/analyze")
def analyze_conversation(
    conversation_id: str,
    request: Optional[AnalyzeRequest] = None,
    db: Session = Depends(get_db),
    client: AnalysisClient = Depends(get_analysis_client),
):
    """
    Request analysis from the collaborator and reconcile the result.

    Sync handler: the collaborator call blocks, so it must run in the threadpool.
    """
    request = request or AnalyzeRequest()
    try:
        outcome = AnalysisPipeline(db, client).run(
            conversation_id,
            is_reanalysis=request.is_reanalysis,
            user_guidance=request.user_guidance,
        )
    except (LookupError, ReconciliationError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _outcome_to_dict(outcome)


@router.get("/conversations/{conversation_id}/analysis-request")
async def get_analysis_request(
    conversation_id: str,
    is_reanalysis: bool = False,
    user_guidance: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        return build_analysis_request(db, conversation_id, is_reanalysis, user_guidance)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# RESOLUTION STATE
# =============================================================================

@router.get("/conversations/open")
async def list_open_conversations(db: Session = Depends(get_db)):
    conversations = ConversationQueryService(db).get_open_conversations()
    return {"conversations": [conversation_to_dict(c) for c in conversations], "total": len(conversations)}


@router.get("/conversations/stale")
async def list_stale_conversations(
    days: int = STALE_CONVERSATION_DAYS,
    db: Session = Depends(get_db),
):
    """Open conversations with no activity for more than `days` days."""
    if days < 0:
        raise HTTPException(status_code=400, detail="days must be >= 0")
    conversations = ConversationQueryService(db).get_stale_conversations(days_threshold=days)
    return {"conversations": conversations, "total": len(conversations)}


@router.get("/people/{person_id}/awaiting")
async def list_conversations_awaiting_person(person_id: str, db: Session = Depends(get_db)):
    if db.get(PersonDB, person_id) is None:
        raise HTTPException(status_code=404, detail="Person not found")
    conversations = ConversationQueryService(db).get_conversations_awaiting_person(person_id)
    return {"conversations": [conversation_to_dict(c) for c in conversations], "total": len(conversations)}

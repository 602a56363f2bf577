"""
Parley - Agreement Item API Router

Override chain inspection and override status management.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import OverrideStatus
from ..services.reconciliation import (
    AgreementChainError,
    AgreementChainService,
    AgreementItemNotFoundError,
)
from ..services.reconciliation.agreements import item_to_dict


router = APIRouter(prefix="/agreement-items", tags=["agreements"])


class OverrideStatusRequest(BaseModel):
    status: str  # active, disputed, withdrawn


def _raise_for(e: AgreementChainError):
    if isinstance(e, AgreementItemNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


@router.get("/effective")
async def get_effective_item_for_topic(topic: str, db: Session = Depends(get_db)):
    """Currently effective item for a topic."""
    try:
        item = AgreementChainService(db).get_effective_item_for_topic(topic)
    except AgreementChainError as e:
        _raise_for(e)
    if item is None:
        raise HTTPException(status_code=404, detail=f"No agreement item for topic: {topic}")
    return item_to_dict(item)


@router.get("/{item_id}/chain")
async def get_override_chain(item_id: str, db: Session = Depends(get_db)):
    try:
        chain = AgreementChainService(db).get_override_chain(item_id)
    except AgreementChainError as e:
        _raise_for(e)
    return {"chain": [dict(item_to_dict(item), depth=depth) for depth, item in chain]}


@router.get("/{item_id}/effective")
async def get_effective_item(item_id: str, db: Session = Depends(get_db)):
    try:
        item = AgreementChainService(db).get_effective_item(item_id)
    except AgreementChainError as e:
        _raise_for(e)
    return item_to_dict(item)


@router.patch("/{item_id}/override-status")
async def update_override_status(
    item_id: str,
    request: OverrideStatusRequest,
    db: Session = Depends(get_db),
):
    try:
        OverrideStatus(request.status)
    except ValueError:
        valid = [s.value for s in OverrideStatus]
        raise HTTPException(status_code=400, detail=f"Invalid status. Must be one of: {valid}")

    try:
        item = AgreementChainService(db).update_override_status(item_id, request.status)
    except AgreementChainError as e:
        _raise_for(e)
    db.commit()
    return item_to_dict(item)

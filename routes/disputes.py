"""Dispute Routes"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from database import get_db
from middleware.auth import get_current_user_id
from middleware.rate_limiter import rate_limited
from schemas.dispute import (
    CreateDisputeRequest,
    CreateDisputeResponse,
    DisputeStatusResponse,
    InvestigateDisputeRequest,
    ResolveDisputeRequest,
    ResolveDisputeResponse,
)
from services.dispute_service import DisputeService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["disputes"])


@router.post("/create-dispute", response_model=CreateDisputeResponse)
def create_dispute(
    body: CreateDisputeRequest,
    _limit=Depends(rate_limited("moderation")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    dispute = DisputeService.file_dispute(
        db, body.date_order_id, user_id, body.reason, body.description, body.evidence_urls
    )
    return {"success": True, "disputeId": dispute.id}


@router.post("/resolve-dispute", response_model=ResolveDisputeResponse)
def resolve_dispute(
    body: ResolveDisputeRequest,
    _limit=Depends(rate_limited("general")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    """Admin only"""
    result = DisputeService.resolve_dispute(
        db, body.dispute_id, user_id, body.resolution, amount=body.amount, notes=body.notes,
        idempotency_key=idempotency_key,
    )
    return result.to_dict()


@router.post("/investigate-dispute", response_model=DisputeStatusResponse)
def investigate_dispute(
    body: InvestigateDisputeRequest,
    _limit=Depends(rate_limited("general")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    dispute = DisputeService.investigate_dispute(db, body.dispute_id, user_id)
    return {"success": True, "disputeId": dispute.id, "status": dispute.status}

from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from schemas.booking import CamelModel


class CreateDisputeRequest(CamelModel):
    # clients still send the booking id under its legacy name
    date_order_id: str
    reason: str
    description: str = Field(max_length=2000)
    evidence_urls: List[str] = Field(default_factory=list, max_length=5)


class CreateDisputeResponse(CamelModel):
    success: bool
    dispute_id: str


class ResolveDisputeRequest(CamelModel):
    dispute_id: str
    resolution: str
    amount: Optional[Decimal] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class ResolveDisputeResponse(CamelModel):
    success: bool
    dispute_id: str
    booking_status: str
    resolution: str
    refund_amount: int


class InvestigateDisputeRequest(CamelModel):
    dispute_id: str


class DisputeStatusResponse(CamelModel):
    success: bool
    dispute_id: str
    status: str

from typing import Literal, Optional

from pydantic import Field

from schemas.booking import CamelModel


class CreateTopupRequest(CamelModel):
    amount: int = Field(gt=0)


class TopupRequestResponse(CamelModel):
    success: bool
    request_id: str
    transfer_code: str
    amount: int
    status: str
    expires_at: str


class CancelTopupRequest(CamelModel):
    request_id: str


class TopupWebhookResponse(CamelModel):
    success: bool
    message: str
    request_id: Optional[str] = None
    amount: Optional[int] = None


class PurchaseFeaturedSlotRequest(CamelModel):
    slot_type: Literal["homepage_top", "search_top", "category_top"]
    duration_days: int


class PurchaseFeaturedSlotResponse(CamelModel):
    success: bool
    slot_id: str
    end_date: str
    new_balance: int

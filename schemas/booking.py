from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies arrive camelCased from the web and mobile clients"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateBookingRequest(CamelModel):
    provider_id: str
    service_id: str
    date: str
    time: str
    location: str
    message: Optional[str] = Field(default=None, max_length=1000)
    duration_hours: Optional[int] = Field(default=None, ge=1, le=24)
    promo_code_id: Optional[str] = None


class CreateBookingResponse(CamelModel):
    booking_id: str
    promo_discount: int
    total_amount: int
    platform_fee: int
    partner_earning: int


class CompleteBookingRequest(CamelModel):
    booking_id: str
    action: Optional[Literal["check_in", "start", "finish", "confirm"]] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class BookingDecisionRequest(CamelModel):
    booking_id: str
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingStatusResponse(CamelModel):
    success: bool
    status: str


class ValidatePromoRequest(CamelModel):
    code: str
    subtotal: Decimal


class ValidatePromoResponse(CamelModel):
    valid: bool
    discount: int
    reason: Optional[str] = None
    promo_code_id: Optional[str] = None


class ReferralRewardResponse(CamelModel):
    success: bool
    paid: bool
    reason: str
    referrer_reward: int = 0
    referred_reward: int = 0

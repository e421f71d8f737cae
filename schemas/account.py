from typing import Optional

from pydantic import Field

from schemas.booking import CamelModel


class ReportUserRequest(CamelModel):
    reported_user_id: str
    reason: str
    description: Optional[str] = Field(default=None, max_length=2000)


class ReportUserResponse(CamelModel):
    success: bool
    report_id: str


class SendOtpRequest(CamelModel):
    phone: str


class VerifyOtpRequest(CamelModel):
    phone: str
    otp_code: str

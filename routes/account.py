"""
Account Routes
User reports and phone verification
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from middleware.auth import get_current_user_id
from middleware.rate_limiter import rate_limited
from schemas.account import ReportUserRequest, ReportUserResponse, SendOtpRequest, VerifyOtpRequest
from services.otp_service import otp_service
from services.report_service import ReportService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["account"])


@router.post("/report-user", response_model=ReportUserResponse)
def report_user(
    body: ReportUserRequest,
    _limit=Depends(rate_limited("moderation")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    report = ReportService.report_user(db, user_id, body.reported_user_id, body.reason, body.description)
    return {"success": True, "reportId": report.id}


@router.post("/send-otp")
def send_otp(
    body: SendOtpRequest,
    _limit=Depends(rate_limited("auth")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return otp_service.send_otp(db, user_id, body.phone)


@router.post("/verify-otp")
def verify_otp(
    body: VerifyOtpRequest,
    _limit=Depends(rate_limited("auth")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return otp_service.verify_otp(db, user_id, body.phone, body.otp_code)

"""
Phone verification codes and user moderation reports
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from models import Notification, PhoneVerification, Report
from services.otp_service import OTPService, hash_otp, is_valid_vn_phone, normalize_phone
from services.report_service import ReportService
from utils.error_handler import NotFoundError, RateLimitExceededError, ValidationError

PHONE = "0912345678"


@pytest.fixture
def sms_sender():
    return Mock()


@pytest.fixture
def otp(sms_sender):
    return OTPService(sms_sender=sms_sender)


class TestPhoneFormat:

    def test_normalizes_country_code(self):
        assert normalize_phone("+84 912 345 678") == PHONE

    def test_valid_mobile_prefixes(self):
        assert is_valid_vn_phone(PHONE)
        assert is_valid_vn_phone("0381234567")

    def test_rejects_short_or_foreign_numbers(self):
        assert not is_valid_vn_phone("12345")
        assert not is_valid_vn_phone("0212345678")


class TestSendOtp:

    def test_issues_hashed_code(self, db_session, booker, otp, sms_sender):
        result = otp.send_otp(db_session, booker.id, PHONE)

        assert result["success"]
        code = result["_devOtp"]
        record = db_session.query(PhoneVerification).filter_by(user_id=booker.id).one()
        assert record.otp_hash == hash_otp(code)
        assert record.otp_hash != code
        sms_sender.send.assert_called_once()

    def test_invalid_phone(self, db_session, booker, otp):
        with pytest.raises(ValidationError):
            otp.send_otp(db_session, booker.id, "12345")

    def test_hourly_cap(self, db_session, booker, otp):
        for _ in range(5):
            otp.send_otp(db_session, booker.id, PHONE)

        with pytest.raises(RateLimitExceededError) as exc_info:
            otp.send_otp(db_session, booker.id, PHONE)

        assert exc_info.value.http_status == 429
        assert exc_info.value.headers["Retry-After"] == "3600"

    def test_new_code_invalidates_the_previous_one(self, db_session, booker, otp):
        first = otp.send_otp(db_session, booker.id, PHONE)["_devOtp"]
        second = otp.send_otp(db_session, booker.id, PHONE)["_devOtp"]

        assert db_session.query(PhoneVerification).filter_by(user_id=booker.id).count() == 2
        if first != second:
            with pytest.raises(ValidationError):
                otp.verify_otp(db_session, booker.id, PHONE, first)
        assert otp.verify_otp(db_session, booker.id, PHONE, second)["verified"]

    def test_phone_verified_by_another_account(self, db_session, booker, make_user, otp):
        make_user(name="Owner", phone=PHONE, phone_verified=True)
        with pytest.raises(ValidationError):
            otp.send_otp(db_session, booker.id, PHONE)


class TestVerifyOtp:

    def test_correct_code_verifies_phone(self, db_session, booker, otp):
        code = otp.send_otp(db_session, booker.id, PHONE)["_devOtp"]

        result = otp.verify_otp(db_session, booker.id, PHONE, code)

        assert result == {"success": True, "message": "Phone verified successfully", "verified": True}
        db_session.refresh(booker)
        assert booker.phone == PHONE
        assert booker.phone_verified

    def test_wrong_code_counts_attempt(self, db_session, booker, otp):
        code = otp.send_otp(db_session, booker.id, PHONE)["_devOtp"]
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(ValidationError) as exc_info:
            otp.verify_otp(db_session, booker.id, PHONE, wrong)

        assert exc_info.value.kind == "otp_invalid"
        assert exc_info.value.details["remainingAttempts"] == 4
        record = db_session.query(PhoneVerification).filter_by(user_id=booker.id).one()
        assert record.attempts == 1

    def test_locked_after_max_attempts(self, db_session, booker, otp):
        otp.send_otp(db_session, booker.id, PHONE)
        record = db_session.query(PhoneVerification).filter_by(user_id=booker.id).one()
        record.attempts = 5
        db_session.commit()

        with pytest.raises(ValidationError) as exc_info:
            otp.verify_otp(db_session, booker.id, PHONE, "123456")

        assert exc_info.value.kind == "otp_locked"
        assert db_session.query(PhoneVerification).count() == 0

    def test_expired_code_is_deleted(self, db_session, booker, otp):
        code = otp.send_otp(db_session, booker.id, PHONE)["_devOtp"]
        record = db_session.query(PhoneVerification).filter_by(user_id=booker.id).one()
        record.expires_at = datetime.utcnow() - timedelta(seconds=1)
        db_session.commit()

        with pytest.raises(ValidationError) as exc_info:
            otp.verify_otp(db_session, booker.id, PHONE, code)

        assert exc_info.value.kind == "otp_expired"
        assert db_session.query(PhoneVerification).count() == 0

    def test_no_pending_code(self, db_session, booker, otp):
        with pytest.raises(NotFoundError):
            otp.verify_otp(db_session, booker.id, PHONE, "123456")

    def test_code_must_be_six_digits(self, db_session, booker, otp):
        with pytest.raises(ValidationError):
            otp.verify_otp(db_session, booker.id, PHONE, "1234")


class TestReportUser:

    def test_creates_report_and_alerts_admins(self, db_session, booker, partner, admin):
        report = ReportService.report_user(db_session, booker.id, partner.id, "scam", "Asked for money upfront")

        assert report.status == "pending"
        assert db_session.query(Report).count() == 1
        assert db_session.query(Notification).filter_by(user_id=admin.id, type="report").count() == 1

    def test_cannot_report_yourself(self, db_session, booker):
        with pytest.raises(ValidationError):
            ReportService.report_user(db_session, booker.id, booker.id, "scam")

    def test_invalid_reason(self, db_session, booker, partner):
        with pytest.raises(ValidationError):
            ReportService.report_user(db_session, booker.id, partner.id, "too_tall")

    def test_description_length(self, db_session, booker, partner):
        with pytest.raises(ValidationError):
            ReportService.report_user(db_session, booker.id, partner.id, "other", "x" * 2001)

    def test_unknown_user(self, db_session, booker):
        with pytest.raises(NotFoundError):
            ReportService.report_user(db_session, booker.id, "missing", "harassment")
        assert db_session.query(Report).count() == 0

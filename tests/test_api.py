"""
HTTP surface: authentication, rate limit headers, CORS, error mapping
"""

from decimal import Decimal
from unittest.mock import patch

from config import Config
from models import Booking, Dispute


def _booking_body(partner, service, **extra):
    body = {
        "providerId": partner.id,
        "serviceId": service.id,
        "date": "2026-11-20",
        "time": "19:00",
        "location": "District 1, Ho Chi Minh City",
    }
    body.update(extra)
    return body


class TestAuthentication:

    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_token(self, client, partner, service):
        response = client.post("/create-booking", json=_booking_body(partner, service))
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_bad_token(self, client, partner, service):
        response = client.post(
            "/create-booking",
            json=_booking_body(partner, service),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401


class TestCreateBookingEndpoint:

    def test_success_payload(self, client, db_session, booker, partner, service, auth_headers):
        response = client.post("/create-booking", json=_booking_body(partner, service), headers=auth_headers(booker))

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["totalAmount"] == 300000
        assert data["platformFee"] == 72000
        assert data["partnerEarning"] == 228000
        assert data["promoDiscount"] == 0
        assert db_session.get(Booking, data["bookingId"]) is not None
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"

    def test_legacy_function_prefix(self, client, booker, partner, service, auth_headers):
        response = client.post(
            "/functions/v1/create-booking", json=_booking_body(partner, service), headers=auth_headers(booker)
        )
        assert response.status_code == 200, response.text

    def test_schema_violation_is_400(self, client, booker, partner, auth_headers):
        response = client.post("/create-booking", json={"providerId": partner.id}, headers=auth_headers(booker))
        assert response.status_code == 400
        assert "error" in response.json()

    def test_insufficient_funds(self, client, make_user, partner, service, auth_headers):
        poor = make_user(balance=1000, name="Poor")
        response = client.post("/create-booking", json=_booking_body(partner, service), headers=auth_headers(poor))

        assert response.status_code == 400
        assert response.json()["kind"] == "INSUFFICIENT_FUNDS"


class TestCompleteBookingEndpoint:

    def test_flow_with_idempotent_confirm(
        self, client, db_session, booker, partner, create_booking, drive_booking, auth_headers
    ):
        booking = drive_booking(create_booking(), "in_progress")

        finished = client.post("/complete-booking", json={"bookingId": booking.id}, headers=auth_headers(partner))
        assert finished.json() == {"success": True, "status": "completed_pending"}

        headers = auth_headers(booker, **{"Idempotency-Key": "confirm-abc"})
        first = client.post("/complete-booking", json={"bookingId": booking.id}, headers=headers)
        second = client.post("/complete-booking", json={"bookingId": booking.id}, headers=headers)

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json() == {"success": True, "status": "completed"}
        db_session.refresh(partner)
        assert partner.balance == Decimal("228000")

    def test_idempotency_key_reused_by_other_user(
        self, client, booker, partner, create_booking, drive_booking, auth_headers
    ):
        booking = drive_booking(create_booking(), "completed_pending")
        client.post(
            "/complete-booking",
            json={"bookingId": booking.id},
            headers=auth_headers(booker, **{"Idempotency-Key": "key-1"}),
        )

        response = client.post(
            "/complete-booking",
            json={"bookingId": booking.id, "action": "confirm"},
            headers=auth_headers(partner, **{"Idempotency-Key": "key-1"}),
        )
        assert response.status_code == 400

    def test_non_party_gets_403(self, client, outsider, create_booking, auth_headers):
        booking = create_booking()
        response = client.post(
            "/accept-booking", json={"bookingId": booking.id}, headers=auth_headers(outsider)
        )
        assert response.status_code == 403

    def test_invalid_transition_reports_current_status(self, client, partner, create_booking, auth_headers):
        booking = create_booking()
        response = client.post(
            "/complete-booking",
            json={"bookingId": booking.id, "action": "start"},
            headers=auth_headers(partner),
        )
        assert response.status_code == 400
        assert response.json()["currentStatus"] == "pending"


class TestDisputeEndpoints:

    def test_file_and_resolve(self, client, db_session, booker, admin, create_booking, drive_booking, auth_headers):
        booking = drive_booking(create_booking(), "in_progress")

        filed = client.post(
            "/create-dispute",
            json={"dateOrderId": booking.id, "reason": "partner_no_show", "description": "Never showed up"},
            headers=auth_headers(booker),
        )
        assert filed.status_code == 200, filed.text
        dispute_id = filed.json()["disputeId"]

        forbidden = client.post(
            "/resolve-dispute",
            json={"disputeId": dispute_id, "resolution": "refund_full"},
            headers=auth_headers(booker),
        )
        assert forbidden.status_code == 403

        resolved = client.post(
            "/resolve-dispute",
            json={"disputeId": dispute_id, "resolution": "refund_full"},
            headers=auth_headers(admin),
        )
        assert resolved.status_code == 200, resolved.text
        assert resolved.json()["bookingStatus"] == "cancelled"
        assert resolved.json()["refundAmount"] == 300000
        assert db_session.get(Dispute, dispute_id).status == "resolved"

    def test_too_many_evidence_urls(self, client, booker, create_booking, drive_booking, auth_headers):
        booking = drive_booking(create_booking(), "accepted")
        response = client.post(
            "/create-dispute",
            json={
                "dateOrderId": booking.id,
                "reason": "other",
                "description": "See photos",
                "evidenceUrls": [f"https://img.example/{i}.jpg" for i in range(6)],
            },
            headers=auth_headers(booker),
        )
        assert response.status_code == 400


class TestRateLimiting:

    def test_moderation_class_returns_429(self, client, booker, auth_headers):
        body = {"reportedUserId": "missing-user", "reason": "scam"}
        statuses = [
            client.post("/report-user", json=body, headers=auth_headers(booker)).status_code for _ in range(5)
        ]
        assert statuses == [404] * 5

        response = client.post("/report-user", json=body, headers=auth_headers(booker))
        assert response.status_code == 429
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert int(response.headers["Retry-After"]) >= 1
        assert response.json()["retryAfter"] >= 1

    def test_limits_are_per_client_address(self, client, booker, auth_headers):
        body = {"reportedUserId": "missing-user", "reason": "scam"}
        for _ in range(5):
            client.post("/report-user", json=body, headers=auth_headers(booker, **{"X-Forwarded-For": "203.0.113.1"}))

        other = client.post(
            "/report-user", json=body, headers=auth_headers(booker, **{"X-Forwarded-For": "203.0.113.2"})
        )
        assert other.status_code == 404


class TestMiscEndpoints:

    def test_validate_unknown_promo(self, client, booker, auth_headers):
        response = client.post(
            "/validate-promo", json={"code": "NOPE", "subtotal": 300000}, headers=auth_headers(booker)
        )
        assert response.status_code == 200
        assert response.json()["valid"] is False

    def test_referral_without_completed_booking(self, client, booker, auth_headers):
        response = client.post("/process-referral-reward", headers=auth_headers(booker))
        assert response.status_code == 200
        assert response.json()["paid"] is False
        assert response.json()["reason"] == "no_completed_booking"

    def test_otp_round_trip(self, client, db_session, booker, auth_headers):
        sent = client.post("/send-otp", json={"phone": "0912345678"}, headers=auth_headers(booker))
        assert sent.status_code == 200, sent.text

        verified = client.post(
            "/verify-otp",
            json={"phone": "0912345678", "otpCode": sent.json()["_devOtp"]},
            headers=auth_headers(booker),
        )
        assert verified.status_code == 200
        db_session.refresh(booker)
        assert booker.phone_verified


class TestCors:

    def test_preflight_from_allowed_origin(self, client):
        response = client.options(
            "/create-booking",
            headers={
                "Origin": "https://www.dinedate.vn",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type, idempotency-key",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://www.dinedate.vn"


class TestWalletEndpoints:

    def test_topup_round_trip_through_webhook(self, client, db_session, booker, auth_headers):
        created = client.post("/create-topup-request", json={"amount": 250000}, headers=auth_headers(booker))
        assert created.status_code == 200, created.text
        code = created.json()["transferCode"]
        assert created.json()["status"] == "pending"
        assert created.headers["X-RateLimit-Limit"] == "10"

        payload = {"id": 1, "content": f"NAP {code}", "transferAmount": 250000}
        with patch.object(Config, "SEPAY_WEBHOOK_SECRET", "sepay-secret"):
            refused = client.post("/sepay-webhook", json=payload, headers={"Authorization": "Apikey wrong"})
            bearer = client.post("/sepay-webhook", json=payload, headers={"Authorization": "Bearer sepay-secret"})
            accepted = client.post("/sepay-webhook", json=payload, headers={"Authorization": "Apikey sepay-secret"})
            redelivered = client.post("/sepay-webhook", json=payload, headers={"Authorization": "Apikey sepay-secret"})

        assert refused.status_code == bearer.status_code == 401
        assert accepted.status_code == 200, accepted.text
        assert accepted.json() == {
            "success": True, "message": "Topup confirmed",
            "requestId": created.json()["requestId"], "amount": 250000,
        }
        assert redelivered.json() == {"success": True, "message": "Ignored: No matching pending request found"}
        db_session.refresh(booker)
        assert booker.balance == Decimal("1250000")

    def test_webhook_refused_in_production_without_secret(self, client):
        with patch.object(Config, "SEPAY_WEBHOOK_SECRET", ""), patch.object(Config, "IS_PRODUCTION", True):
            response = client.post("/sepay-webhook", json={"content": "DD1234567890", "transferAmount": 1})
        assert response.status_code == 401

    def test_featured_slot_requires_funds(self, client, partner, auth_headers):
        response = client.post(
            "/purchase-featured-slot",
            json={"slotType": "homepage_top", "durationDays": 1},
            headers=auth_headers(partner),
        )
        assert response.status_code == 400
        assert response.json()["kind"] == "INSUFFICIENT_FUNDS"

    def test_featured_slot_unknown_type_is_400(self, client, partner, auth_headers):
        response = client.post(
            "/purchase-featured-slot",
            json={"slotType": "sidebar", "durationDays": 1},
            headers=auth_headers(partner),
        )
        assert response.status_code == 400


class TestResolveDisputeRetry:

    def test_idempotency_key_header_replays(
        self, client, db_session, booker, admin, create_booking, drive_booking, auth_headers
    ):
        booking = drive_booking(create_booking(), "accepted")
        filed = client.post(
            "/create-dispute",
            json={"dateOrderId": booking.id, "reason": "other", "description": "Cancelled on site"},
            headers=auth_headers(booker),
        )
        body = {"disputeId": filed.json()["disputeId"], "resolution": "refund_full"}
        headers = auth_headers(admin, **{"Idempotency-Key": "resolve-http-1"})

        first = client.post("/resolve-dispute", json=body, headers=headers)
        second = client.post("/resolve-dispute", json=body, headers=headers)

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()
        db_session.refresh(booker)
        assert booker.balance == Decimal("1000000")

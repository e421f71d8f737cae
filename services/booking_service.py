"""
Booking lifecycle service

create -> accept -> check-in -> start -> finish -> confirm, plus reject and
cancel. Each operation validates and authorizes before mutating, then runs
as one database transaction holding row locks on the booking and the
wallets it touches.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from config import Config
from models import Booking, BookingStatus, PayoutStatus, Service, User
from services.escrow_ledger import EscrowLedger
from services.idempotency_service import IdempotencyService, OperationType
from services.notification_service import format_vnd, notification_service
from services.promo_code_service import PromoCodeService
from services.settlement_service import SettlementEngine
from utils.atomic_transactions import atomic_transaction, locked_booking_operation
from utils.booking_state_machine import BookingActor, BookingStateValidator, BookingTransition
from utils.error_handler import NotFoundError, StateConflictError, ValidationError
from utils.fee_calculator import FeeCalculator

logger = logging.getLogger(__name__)


@dataclass
class CreateBookingRequest:
    provider_id: str
    service_id: str
    date: str
    time: str
    location: str
    message: Optional[str] = None
    duration_hours: Optional[int] = None
    promo_code_id: Optional[str] = None


@dataclass
class BookingCreated:
    booking_id: str
    promo_discount: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    partner_earning: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookingId": self.booking_id,
            "promoDiscount": int(self.promo_discount),
            "totalAmount": int(self.total_amount),
            "platformFee": int(self.platform_fee),
            "partnerEarning": int(self.partner_earning),
        }


def _parse_start_time(date: str, time: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(f"{date}T{time}")
    except (TypeError, ValueError):
        return None


class BookingService:
    """Booking creation and state transitions"""

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @classmethod
    def create_booking(cls, session: Session, booker_id: str, request: CreateBookingRequest) -> BookingCreated:
        """
        Price the service, apply the promo, debit the booker into escrow and
        insert the booking. All or nothing: on any failure no rows are
        written and no wallet moves.
        """
        for field_name in ("provider_id", "service_id", "date", "time", "location"):
            if not getattr(request, field_name):
                raise ValidationError("Missing required fields", details={"field": field_name})
        if request.provider_id == booker_id:
            raise ValidationError("You cannot book your own service")

        with atomic_transaction(session):
            service = session.query(Service).filter(Service.id == request.service_id).first()
            if not service:
                raise NotFoundError("Service not found")
            if not service.available:
                raise ValidationError("Service is not available")
            if service.user_id != request.provider_id:
                raise ValidationError("Service does not belong to provider")

            partner = session.query(User).filter(User.id == request.provider_id).first()
            if not partner:
                raise NotFoundError("Provider not found")
            if not session.query(User.id).filter(User.id == booker_id).first():
                raise NotFoundError("Booker not found")

            duration_hours = FeeCalculator.resolve_duration_hours(service.duration, request.duration_hours)
            subtotal = FeeCalculator.calculate_subtotal(service.price)

            promo_result = None
            discount = Decimal("0")
            if request.promo_code_id:
                promo_result = PromoCodeService.lock_and_evaluate(
                    session, request.promo_code_id, booker_id, subtotal
                )
                if not promo_result.valid:
                    raise ValidationError(promo_result.reason or "Invalid promo code", kind="invalid_promo")
                discount = promo_result.discount

            breakdown = FeeCalculator.calculate_booking_breakdown(subtotal, partner.partner_tier, discount)

            booking = Booking(
                user_id=booker_id,
                partner_id=partner.id,
                service_id=service.id,
                activity=service.activity,
                duration_hours=duration_hours,
                booking_date=request.date,
                booking_time=request.time,
                meeting_location=request.location,
                message=request.message,
                original_amount=breakdown.original_amount,
                promo_discount=breakdown.promo_discount,
                promo_code_id=promo_result.promo.id if promo_result else None,
                total_amount=breakdown.total_amount,
                platform_fee=breakdown.platform_fee,
                partner_earning=breakdown.partner_earning,
                status=BookingStatus.PENDING.value,
                payout_status=PayoutStatus.PENDING.value,
            )
            session.add(booking)
            session.flush()

            if breakdown.total_amount > 0:
                EscrowLedger.open_escrow(
                    session, booker_id, breakdown.total_amount, booking.id,
                    f"Escrow hold for booking: {service.title}",
                )

            if promo_result is not None:
                PromoCodeService.record_usage(
                    session, promo_result.promo, booker_id, booking.id, breakdown.promo_discount
                )

            notification_service.notify(
                session, partner.id, "new_booking", "New booking request",
                f"You have a new {service.activity} booking on {request.date} at {request.time} "
                f"({format_vnd(breakdown.partner_earning)} earning).",
                {"bookingId": booking.id},
            )

        logger.info(
            f"📅 BOOKING_CREATE: {booking.id} booker={booker_id} partner={partner.id} "
            f"total={breakdown.total_amount} fee={breakdown.platform_fee} discount={breakdown.promo_discount}"
        )
        return BookingCreated(
            booking_id=booking.id,
            promo_discount=breakdown.promo_discount,
            total_amount=breakdown.total_amount,
            platform_fee=breakdown.platform_fee,
            partner_earning=breakdown.partner_earning,
        )

    # ------------------------------------------------------------------
    # Partner decision
    # ------------------------------------------------------------------

    @classmethod
    def accept_booking(cls, session: Session, booking_id: str, caller_id: str) -> Dict[str, Any]:
        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingStateValidator.actor_for(booking, caller_id)
            target = BookingStateValidator.validate_transition(booking, BookingTransition.ACCEPT, actor)
            BookingStateValidator.apply_status(booking, target)
            booking.accepted_at = datetime.utcnow()
            notification_service.notify(
                session, booking.user_id, "booking_accepted", "Booking accepted",
                "Your booking was accepted by the partner.", {"bookingId": booking.id},
            )
        return {"success": True, "status": booking.status}

    @classmethod
    def reject_booking(
        cls,
        session: Session,
        booking_id: str,
        caller_id: Optional[str],
        reason: Optional[str] = None,
        auto: bool = False,
    ) -> Dict[str, Any]:
        """Partner (or the expiry job) declines; escrow goes back to the booker"""
        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingActor.SYSTEM if auto else BookingStateValidator.actor_for(booking, caller_id)
            target = BookingStateValidator.validate_transition(booking, BookingTransition.REJECT, actor)
            cls._close_with_refund(session, booking, target, reason)
            booking.auto_rejected = auto
            notification_service.notify(
                session, booking.user_id, "booking_rejected",
                "Booking expired" if auto else "Booking rejected",
                f"Your booking was {'not answered in time' if auto else 'rejected'}. "
                f"{format_vnd(booking.total_amount)} was returned to your wallet.",
                {"bookingId": booking.id},
            )
        return {"success": True, "status": booking.status}

    @classmethod
    def cancel_booking(
        cls, session: Session, booking_id: str, caller_id: str, reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Booker withdraws before the meeting starts; full refund"""
        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingStateValidator.actor_for(booking, caller_id)
            target = BookingStateValidator.validate_transition(booking, BookingTransition.CANCEL, actor)
            cls._close_with_refund(session, booking, target, reason)
            notification_service.notify(
                session, booking.partner_id, "booking_cancelled", "Booking cancelled",
                "The booker cancelled this booking.", {"bookingId": booking.id},
            )
        return {"success": True, "status": booking.status}

    @staticmethod
    def _close_with_refund(session: Session, booking: Booking, target: str, reason: Optional[str]) -> None:
        if Decimal(booking.total_amount) > 0:
            EscrowLedger.refund_escrow(session, booking)
        BookingStateValidator.apply_status(booking, target)
        booking.payout_status = PayoutStatus.REFUNDED.value
        booking.cancelled_at = datetime.utcnow()
        booking.cancel_reason = reason

    # ------------------------------------------------------------------
    # Meeting flow
    # ------------------------------------------------------------------

    @classmethod
    def check_in(
        cls,
        session: Session,
        booking_id: str,
        caller_id: str,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Either party may check in while the booking is accepted. Only the
        partner's check-in advances the status.
        """
        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingStateValidator.actor_for(booking, caller_id)
            BookingStateValidator.ensure_actor_allowed(BookingTransition.CHECK_IN, actor)
            if booking.status != BookingStatus.ACCEPTED.value:
                raise StateConflictError(
                    "Invalid state transition",
                    details={"currentStatus": booking.status, "action": BookingTransition.CHECK_IN.value},
                )

            now = datetime.utcnow()
            if actor == BookingActor.BOOKER:
                booking.booker_checked_in_at = now
                booking.booker_checkin_lat, booking.booker_checkin_lng = lat, lng
                notification_service.notify(
                    session, booking.partner_id, "booking_checkin", "Booker checked in",
                    "The booker has arrived at the meeting location.", {"bookingId": booking.id},
                )
            else:
                booking.partner_checked_in_at = now
                booking.partner_checkin_lat, booking.partner_checkin_lng = lat, lng
                BookingStateValidator.apply_status(booking, BookingStatus.ARRIVED.value)
                notification_service.notify(
                    session, booking.user_id, "booking_checkin", "Partner arrived",
                    "Your partner has checked in at the meeting location.", {"bookingId": booking.id},
                )
        return {"success": True, "status": booking.status}

    @classmethod
    def start_booking(cls, session: Session, booking_id: str, caller_id: str) -> Dict[str, Any]:
        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingStateValidator.actor_for(booking, caller_id)
            target = BookingStateValidator.validate_transition(booking, BookingTransition.START, actor)
            BookingStateValidator.apply_status(booking, target)
            booking.started_at = datetime.utcnow()
        return {"success": True, "status": booking.status}

    @classmethod
    def finish_booking(cls, session: Session, booking_id: str, caller_id: str) -> Dict[str, Any]:
        """Partner marks the meeting done; money does not move until the booker confirms"""
        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingStateValidator.actor_for(booking, caller_id)
            target = BookingStateValidator.validate_transition(booking, BookingTransition.FINISH, actor)
            BookingStateValidator.apply_status(booking, target)
            booking.finished_at = datetime.utcnow()
            notification_service.notify(
                session, booking.user_id, "booking_finished", "Please confirm your booking",
                "Your partner marked the booking as finished. Confirm to release payment.",
                {"bookingId": booking.id},
            )
        return {"success": True, "status": booking.status}

    @classmethod
    def confirm_completion(
        cls,
        session: Session,
        booking_id: str,
        caller_id: str,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Booker confirms; escrow is released and settlement runs.

        Already completed bookings return success without side effects. With
        an idempotency key, a replay returns the first call's stored result.
        """
        if idempotency_key:
            cached = IdempotencyService.get_cached_result(
                session, idempotency_key, OperationType.CONFIRM_BOOKING, caller_id, booking_id
            )
            if cached is not None:
                logger.info(f"🔁 BOOKING_CONFIRM: replay of key {idempotency_key[:12]} for {booking_id}")
                return cached

        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingStateValidator.actor_for(booking, caller_id)
            if booking.status == BookingStatus.COMPLETED.value:
                logger.info(f"BOOKING_CONFIRM: {booking_id} already completed, no-op")
                result = {"success": True, "status": booking.status}
            else:
                BookingStateValidator.validate_transition(booking, BookingTransition.CONFIRM, actor)
                settlement = SettlementEngine.settle_booking(session, booking)
                notification_service.notify(
                    session, booking.partner_id, "booking_completed", "Payment released",
                    f"{format_vnd(booking.partner_earning)} was added to your balance.",
                    {"bookingId": booking.id},
                )
                result = settlement.to_dict()
                result.pop("bookingId", None)

            if idempotency_key:
                IdempotencyService.store_result(
                    session, idempotency_key, OperationType.CONFIRM_BOOKING, caller_id, booking.id, result
                )
        return result

    @classmethod
    def complete_booking(
        cls,
        session: Session,
        booking_id: str,
        caller_id: str,
        action: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Multi-purpose transition endpoint. Without an explicit action the
        caller's role and the current status decide: the partner finishes an
        in-progress booking, the booker confirms a completed_pending one.
        """
        if action is None:
            booking = session.query(Booking).filter(Booking.id == booking_id).first()
            if booking is None:
                raise NotFoundError("Booking not found")
            actor = BookingStateValidator.actor_for(booking, caller_id)
            status = booking.status

            if status == BookingStatus.COMPLETED.value:
                return {"success": True, "status": status}
            if actor == BookingActor.PARTNER and status == BookingStatus.IN_PROGRESS.value:
                action = BookingTransition.FINISH.value
            elif actor == BookingActor.BOOKER and status == BookingStatus.COMPLETED_PENDING.value:
                action = BookingTransition.CONFIRM.value
            else:
                raise StateConflictError("Invalid state transition", details={"currentStatus": status})

        if action == BookingTransition.CHECK_IN.value:
            return cls.check_in(session, booking_id, caller_id, lat, lng)
        if action == BookingTransition.START.value:
            return cls.start_booking(session, booking_id, caller_id)
        if action == BookingTransition.FINISH.value:
            return cls.finish_booking(session, booking_id, caller_id)
        if action == BookingTransition.CONFIRM.value:
            return cls.confirm_completion(session, booking_id, caller_id, idempotency_key)
        raise ValidationError(f"Unknown action '{action}'")

    # ------------------------------------------------------------------
    # Background transitions
    # ------------------------------------------------------------------

    @classmethod
    def auto_complete_booking(cls, session: Session, booking_id: str) -> bool:
        """Settle a completed_pending booking the booker never confirmed"""
        cutoff = datetime.utcnow() - timedelta(hours=Config.AUTO_COMPLETE_HOURS)
        with locked_booking_operation(booking_id, session) as booking:
            if (
                booking.status != BookingStatus.COMPLETED_PENDING.value
                or booking.dispute_paused_at is not None
                or (booking.finished_at or booking.updated_at) > cutoff
            ):
                return False
            BookingStateValidator.validate_transition(booking, BookingTransition.CONFIRM, BookingActor.SYSTEM)
            SettlementEngine.settle_booking(session, booking, auto_completed=True)
            notification_service.notify(
                session, booking.user_id, "booking_auto_completed", "Booking completed automatically",
                f"Your booking was completed automatically after {Config.AUTO_COMPLETE_HOURS} hours "
                "without confirmation.",
                {"bookingId": booking.id},
            )
            notification_service.notify(
                session, booking.partner_id, "booking_completed", "Payment released",
                f"{format_vnd(booking.partner_earning)} was added to your balance.",
                {"bookingId": booking.id},
            )
        return True

    @classmethod
    def expire_pending_booking(cls, session: Session, booking_id: str) -> bool:
        """Auto-reject a pending booking the partner never answered"""
        cutoff = datetime.utcnow() - timedelta(hours=Config.PENDING_BOOKING_EXPIRY_HOURS)
        booking = session.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None or booking.status != BookingStatus.PENDING.value or booking.created_at > cutoff:
            return False
        cls.reject_booking(session, booking_id, None, reason="Partner did not respond in time", auto=True)
        return True

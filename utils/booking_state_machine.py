"""
Booking State Machine
Transition table, actor rules and status guards for bookings
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set

from models import Booking, BookingStatus
from utils.error_handler import PermissionDeniedError, StateConflictError

logger = logging.getLogger(__name__)


class BookingActor(Enum):
    """Who is driving a transition"""

    BOOKER = "booker"
    PARTNER = "partner"
    SYSTEM = "system"
    ADMIN = "admin"


class BookingTransition(Enum):
    """Named booking transitions"""

    ACCEPT = "accept"  # PENDING -> ACCEPTED
    REJECT = "reject"  # PENDING/ACCEPTED -> REJECTED
    CANCEL = "cancel"  # PENDING/ACCEPTED -> CANCELLED
    CHECK_IN = "check_in"  # ACCEPTED -> ARRIVED (partner only advances)
    START = "start"  # ARRIVED -> IN_PROGRESS
    FINISH = "finish"  # IN_PROGRESS -> COMPLETED_PENDING
    CONFIRM = "confirm"  # COMPLETED_PENDING -> COMPLETED
    DISPUTE = "dispute"  # ACCEPTED..COMPLETED -> DISPUTED


class BookingStateValidator:
    """Validates booking state transitions and prevents invalid changes"""

    VALID_TRANSITIONS: Dict[Optional[str], Set[str]] = {
        None: {BookingStatus.PENDING.value},
        BookingStatus.PENDING.value: {
            BookingStatus.ACCEPTED.value,
            BookingStatus.REJECTED.value,
            BookingStatus.CANCELLED.value,
        },
        BookingStatus.ACCEPTED.value: {
            BookingStatus.ARRIVED.value,
            BookingStatus.REJECTED.value,
            BookingStatus.CANCELLED.value,
            BookingStatus.DISPUTED.value,
        },
        BookingStatus.ARRIVED.value: {
            BookingStatus.IN_PROGRESS.value,
            BookingStatus.DISPUTED.value,
        },
        BookingStatus.IN_PROGRESS.value: {
            BookingStatus.COMPLETED_PENDING.value,
            BookingStatus.DISPUTED.value,
        },
        BookingStatus.COMPLETED_PENDING.value: {
            BookingStatus.COMPLETED.value,
            BookingStatus.DISPUTED.value,
        },
        BookingStatus.COMPLETED.value: {
            BookingStatus.DISPUTED.value,
        },
        # Left only through administrative resolution
        BookingStatus.DISPUTED.value: set(),
        BookingStatus.REJECTED.value: set(),
        BookingStatus.CANCELLED.value: set(),
    }

    # Statuses in which the booker's escrow still holds total_amount
    ESCROW_HOLDING_STATES: FrozenSet[str] = frozenset({
        BookingStatus.PENDING.value,
        BookingStatus.ACCEPTED.value,
        BookingStatus.ARRIVED.value,
        BookingStatus.IN_PROGRESS.value,
        BookingStatus.COMPLETED_PENDING.value,
    })

    DISPUTABLE_STATES: FrozenSet[str] = frozenset({
        BookingStatus.ACCEPTED.value,
        BookingStatus.ARRIVED.value,
        BookingStatus.IN_PROGRESS.value,
        BookingStatus.COMPLETED_PENDING.value,
        BookingStatus.COMPLETED.value,
    })

    TRANSITION_TARGETS: Dict[BookingTransition, str] = {
        BookingTransition.ACCEPT: BookingStatus.ACCEPTED.value,
        BookingTransition.REJECT: BookingStatus.REJECTED.value,
        BookingTransition.CANCEL: BookingStatus.CANCELLED.value,
        BookingTransition.CHECK_IN: BookingStatus.ARRIVED.value,
        BookingTransition.START: BookingStatus.IN_PROGRESS.value,
        BookingTransition.FINISH: BookingStatus.COMPLETED_PENDING.value,
        BookingTransition.CONFIRM: BookingStatus.COMPLETED.value,
        BookingTransition.DISPUTE: BookingStatus.DISPUTED.value,
    }

    # Which party may drive each transition
    TRANSITION_ACTORS: Dict[BookingTransition, FrozenSet[BookingActor]] = {
        BookingTransition.ACCEPT: frozenset({BookingActor.PARTNER}),
        BookingTransition.REJECT: frozenset({BookingActor.PARTNER, BookingActor.SYSTEM}),
        BookingTransition.CANCEL: frozenset({BookingActor.BOOKER}),
        BookingTransition.CHECK_IN: frozenset({BookingActor.BOOKER, BookingActor.PARTNER}),
        BookingTransition.START: frozenset({BookingActor.PARTNER}),
        BookingTransition.FINISH: frozenset({BookingActor.PARTNER}),
        BookingTransition.CONFIRM: frozenset({BookingActor.BOOKER, BookingActor.SYSTEM}),
        BookingTransition.DISPUTE: frozenset({BookingActor.BOOKER, BookingActor.PARTNER}),
    }

    @classmethod
    def is_valid_transition(cls, current_status: Optional[str], new_status: str) -> bool:
        return new_status in cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def get_valid_transitions(cls, current_status: Optional[str]) -> Set[str]:
        """Get all valid next states for current status"""
        return cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def holds_escrow(cls, status: str) -> bool:
        return status in cls.ESCROW_HOLDING_STATES

    @classmethod
    def actor_for(cls, booking: Booking, user_id: str) -> BookingActor:
        """Resolve the caller's role on this booking, or refuse third parties"""
        if user_id == booking.user_id:
            return BookingActor.BOOKER
        if user_id == booking.partner_id:
            return BookingActor.PARTNER
        logger.warning(f"🚫 User {user_id} is not a party to booking {booking.id}")
        raise PermissionDeniedError("You are not a party to this booking")

    @classmethod
    def ensure_actor_allowed(cls, transition: BookingTransition, actor: BookingActor) -> None:
        if actor not in cls.TRANSITION_ACTORS[transition]:
            raise PermissionDeniedError(
                f"Only the {' or '.join(sorted(a.value for a in cls.TRANSITION_ACTORS[transition]))} "
                f"can {transition.value.replace('_', ' ')} this booking"
            )

    @classmethod
    def validate_transition(cls, booking: Booking, transition: BookingTransition, actor: BookingActor) -> str:
        """
        Check actor and source status for a transition.

        Returns the target status. Raises PermissionDeniedError for the wrong
        actor and StateConflictError when the booking's current status does
        not allow the transition.
        """
        cls.ensure_actor_allowed(transition, actor)
        target = cls.TRANSITION_TARGETS[transition]
        if not cls.is_valid_transition(booking.status, target):
            logger.warning(
                f"🚫 Invalid booking transition {transition.value} on {booking.id}: "
                f"{booking.status} -> {target}"
            )
            raise StateConflictError(
                "Invalid state transition",
                details={"currentStatus": booking.status, "action": transition.value},
            )
        return target

    @classmethod
    def apply_status(cls, booking: Booking, new_status: str) -> None:
        """Set the new status after re-checking the table"""
        old_status = booking.status
        if not cls.is_valid_transition(old_status, new_status):
            raise StateConflictError(
                "Invalid state transition",
                details={"currentStatus": old_status, "targetStatus": new_status},
            )
        booking.status = new_status
        logger.info(f"📋 BOOKING_STATUS: {booking.id} {old_status} -> {new_status}")

    @classmethod
    def release_from_dispute(cls, booking: Booking, new_status: str) -> None:
        """Administrative exit from DISPUTED once a dispute is resolved"""
        if booking.status != BookingStatus.DISPUTED.value:
            raise StateConflictError(
                "Booking is not under dispute",
                details={"currentStatus": booking.status},
            )
        booking.status = new_status
        booking.dispute_paused_at = None
        logger.info(f"⚖️ BOOKING_STATUS: {booking.id} disputed -> {new_status} (dispute resolved)")

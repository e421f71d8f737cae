"""Atomic transaction utilities for wallet, booking and promo mutations"""

import logging
from contextlib import contextmanager
from typing import Generator, Iterable, List, Optional

from sqlalchemy.orm import Session

from database import SessionLocal
from models import Booking, Dispute, PromoCode, User
from utils.error_handler import NotFoundError

logger = logging.getLogger(__name__)


@contextmanager
def atomic_transaction(session: Optional[Session] = None) -> Generator[Session, None, None]:
    """
    Context manager for atomic database transactions with proper rollback.

    Without a session a new one is created, committed and closed. With a
    provided session, nesting depth is tracked so only the outermost block
    commits; any error rolls the whole transaction back.
    """
    if session is None:
        session = SessionLocal()
        logger.debug("Created new session for atomic transaction")
        try:
            yield session
            session.commit()
            logger.debug("Atomic transaction committed successfully")
        except Exception as e:
            session.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
            raise
        finally:
            session.close()
        return

    transaction_depth = getattr(session, '_atomic_transaction_depth', 0)
    try:
        setattr(session, '_atomic_transaction_depth', transaction_depth + 1)

        if transaction_depth > 0:
            logger.debug(f"Nested transaction detected (depth: {transaction_depth + 1})")

        yield session

        # For nested transactions, let the outermost handle commit
        if transaction_depth == 0:
            session.commit()
            logger.debug("Outermost transaction committed successfully")

    except Exception as e:
        if transaction_depth == 0:
            session.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
        raise
    finally:
        current_depth = getattr(session, '_atomic_transaction_depth', 1)
        setattr(session, '_atomic_transaction_depth', max(0, current_depth - 1))


def lock_user_wallet(user_id: str, session: Session) -> User:
    """SELECT ... FOR UPDATE on a user's wallet row"""
    # Pending changes must reach the row before populate_existing reloads it
    session.flush()
    user = (
        session.query(User)
        .filter(User.id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not user:
        raise NotFoundError("User not found")
    return user


def lock_user_wallets(user_ids: Iterable[str], session: Session) -> List[User]:
    """
    Lock several wallet rows in a stable (sorted id) order so two settlements
    touching the same pair of users cannot deadlock.
    """
    locked = {}
    for user_id in sorted(set(user_ids)):
        locked[user_id] = lock_user_wallet(user_id, session)
    return [locked[user_id] for user_id in user_ids]


@contextmanager
def locked_wallet_operation(user_id: str, session: Session) -> Generator[User, None, None]:
    """Row-locked wallet access inside an atomic transaction"""
    with atomic_transaction(session):
        user = lock_user_wallet(user_id, session)
        logger.debug(f"🔒 Wallet locked for user {user_id}")
        yield user


@contextmanager
def locked_booking_operation(booking_id: str, session: Session) -> Generator[Booking, None, None]:
    """
    Row-locked booking access inside an atomic transaction.
    Serializes concurrent transitions on the same booking.
    """
    with atomic_transaction(session):
        session.flush()
        booking = (
            session.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not booking:
            raise NotFoundError("Booking not found")
        logger.debug(f"🔒 Booking {booking_id} locked (status={booking.status})")
        yield booking


def lock_promo_code(promo_code_id: str, session: Session) -> PromoCode:
    session.flush()
    promo = (
        session.query(PromoCode)
        .filter(PromoCode.id == promo_code_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not promo:
        raise NotFoundError("Promo code not found")
    return promo


def lock_dispute(dispute_id: str, session: Session) -> Dispute:
    session.flush()
    dispute = (
        session.query(Dispute)
        .filter(Dispute.id == dispute_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not dispute:
        raise NotFoundError("Dispute not found")
    return dispute

"""
Escrow Ledger
Moves funds between a payer's balance and escrow, and from escrow to a payee.

Every method expects to run inside the caller's transaction and locks the
wallet rows it touches. Ledger Transaction rows are written in the same
transaction as the wallet mutation they describe.
"""

import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from models import Booking, Transaction, TransactionStatus, TransactionType, User
from utils.atomic_transactions import lock_user_wallet, lock_user_wallets
from utils.error_handler import InsufficientFundsError, LedgerInconsistencyError, ValidationError

logger = logging.getLogger(__name__)


class EscrowLedger:
    """Wallet mutations backing the booking lifecycle"""

    @staticmethod
    def record_transaction(
        session: Session,
        user_id: str,
        tx_type: TransactionType,
        amount: Decimal,
        related_id: Optional[str] = None,
        description: Optional[str] = None,
        payment_method: str = "wallet",
    ) -> Transaction:
        """Append a ledger entry; entries are never updated afterwards"""
        tx = Transaction(
            user_id=user_id,
            type=tx_type.value,
            amount=amount,
            status=TransactionStatus.COMPLETED.value,
            description=description,
            related_id=related_id,
            payment_method=payment_method,
        )
        session.add(tx)
        return tx

    @staticmethod
    def _take_from_escrow(payer: User, amount: Decimal, booking_id: str) -> None:
        if Decimal(payer.escrow) < amount:
            logger.error(
                f"🚨 LEDGER: escrow {payer.escrow} of user {payer.id} cannot cover "
                f"{amount} for booking {booking_id}"
            )
            raise LedgerInconsistencyError("Escrow balance does not cover this booking")
        payer.escrow = Decimal(payer.escrow) - amount

    @classmethod
    def open_escrow(
        cls,
        session: Session,
        payer_id: str,
        amount: Decimal,
        booking_id: str,
        description: Optional[str] = None,
    ) -> User:
        """
        Debit the payer's balance into escrow.

        The balance check and the two-sided mutation happen under the
        payer's row lock so concurrent bookings cannot both pass the check
        against a stale balance.
        """
        if amount <= 0:
            raise ValidationError("Escrow amount must be positive")

        payer = lock_user_wallet(payer_id, session)
        if Decimal(payer.balance) < amount:
            logger.info(f"💸 ESCROW_OPEN: user {payer_id} balance {payer.balance} < {amount}")
            raise InsufficientFundsError()

        payer.balance = Decimal(payer.balance) - amount
        payer.escrow = Decimal(payer.escrow) + amount
        cls.record_transaction(
            session, payer_id, TransactionType.ESCROW_HOLD, amount, booking_id,
            description or "Escrow hold for booking",
        )
        logger.info(f"🔒 ESCROW_OPEN: {amount} held for booking {booking_id} (payer {payer_id})")
        return payer

    @classmethod
    def release_escrow(cls, session: Session, booking: Booking) -> Tuple[User, User]:
        """
        Settle a booking: the payer's escrow drops by total_amount and the
        partner is credited partner_earning. The platform fee stays with the
        platform and is credited to nobody.
        """
        total = Decimal(booking.total_amount)
        earning = Decimal(booking.partner_earning)
        payer, partner = lock_user_wallets([booking.user_id, booking.partner_id], session)

        cls._take_from_escrow(payer, total, booking.id)
        partner.balance = Decimal(partner.balance) + earning

        cls.record_transaction(
            session, payer.id, TransactionType.BOOKING_PAYMENT, total, booking.id,
            "Payment released for completed booking",
        )
        cls.record_transaction(
            session, partner.id, TransactionType.BOOKING_EARNING, earning, booking.id,
            "Earning from completed booking",
        )
        logger.info(
            f"💰 ESCROW_RELEASE: booking {booking.id} total={total} "
            f"partner_earning={earning} platform_fee={booking.platform_fee}"
        )
        return payer, partner

    @classmethod
    def refund_escrow(
        cls,
        session: Session,
        booking: Booking,
        amount: Optional[Decimal] = None,
        description: Optional[str] = None,
    ) -> User:
        """Return escrowed funds to the payer's balance (full booking total by default)"""
        amount = Decimal(booking.total_amount) if amount is None else Decimal(amount)
        payer = lock_user_wallet(booking.user_id, session)

        cls._take_from_escrow(payer, amount, booking.id)
        payer.balance = Decimal(payer.balance) + amount
        cls.record_transaction(
            session, payer.id, TransactionType.REFUND, amount, booking.id,
            description or "Refund of escrowed booking funds",
        )
        logger.info(f"↩️ ESCROW_REFUND: {amount} returned to {payer.id} for booking {booking.id}")
        return payer

    @classmethod
    def split_escrow(
        cls,
        session: Session,
        booking: Booking,
        refund_amount: Decimal,
        platform_fee: Decimal,
        partner_earning: Decimal,
    ) -> Tuple[User, User]:
        """
        Partial resolution: the whole escrow leaves the payer, refund_amount
        goes back to the payer's balance and partner_earning to the partner.
        """
        total = Decimal(booking.total_amount)
        if refund_amount + platform_fee + partner_earning != total:
            raise LedgerInconsistencyError("Split does not add up to the escrowed total")

        payer, partner = lock_user_wallets([booking.user_id, booking.partner_id], session)
        cls._take_from_escrow(payer, total, booking.id)
        payer.balance = Decimal(payer.balance) + refund_amount
        partner.balance = Decimal(partner.balance) + partner_earning

        cls.record_transaction(
            session, payer.id, TransactionType.REFUND, refund_amount, booking.id,
            "Partial refund after dispute resolution",
        )
        settled = total - refund_amount
        if settled > 0:
            cls.record_transaction(
                session, payer.id, TransactionType.BOOKING_PAYMENT, settled, booking.id,
                "Payment released after dispute resolution",
            )
        if partner_earning > 0:
            cls.record_transaction(
                session, partner.id, TransactionType.BOOKING_EARNING, partner_earning, booking.id,
                "Earning after dispute resolution",
            )
        logger.info(
            f"⚖️ ESCROW_SPLIT: booking {booking.id} refund={refund_amount} "
            f"partner={partner_earning} fee={platform_fee}"
        )
        return payer, partner

    @classmethod
    def clawback_refund(
        cls,
        session: Session,
        booking: Booking,
        refund_amount: Decimal,
        partner_share: Decimal,
    ) -> Tuple[User, User]:
        """
        Refund on an already settled booking. partner_share is debited from
        the partner's balance; the rest of the refund is platform funded.
        """
        payer, partner = lock_user_wallets([booking.user_id, booking.partner_id], session)
        if Decimal(partner.balance) < partner_share:
            logger.warning(
                f"⚠️ CLAWBACK: partner {partner.id} balance {partner.balance} "
                f"cannot cover {partner_share} for booking {booking.id}"
            )
            raise InsufficientFundsError("Partner balance cannot cover the refund")

        partner.balance = Decimal(partner.balance) - partner_share
        payer.balance = Decimal(payer.balance) + refund_amount

        if partner_share > 0:
            cls.record_transaction(
                session, partner.id, TransactionType.DISPUTE_CLAWBACK, partner_share, booking.id,
                "Earning reversed after dispute resolution",
            )
        cls.record_transaction(
            session, payer.id, TransactionType.REFUND, refund_amount, booking.id,
            "Refund after dispute resolution",
        )
        logger.info(
            f"⚖️ CLAWBACK: booking {booking.id} refund={refund_amount} partner_share={partner_share}"
        )
        return payer, partner

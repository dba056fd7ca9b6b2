"""
Membership admission and the membership guard.

Admission turns a verified on-chain payment into a permanent Member row.
Replays and concurrent duplicates are resolved by the two unique
constraints on ``members`` (wallet_address, payment_tx_hash); there is no
application-level locking.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .chain import ADDRESS_RE, ChainReader
from .config import Settings
from .models import Member
from .payments import RejectReason, Rejected, verify_payment

logger = logging.getLogger("agentfails.membership")


class AdmissionError(Exception):
    pass


class InvalidWallet(AdmissionError):
    def __init__(self, wallet: object):
        super().__init__("Invalid wallet_address")
        self.wallet = wallet


class PaymentInvalid(AdmissionError):
    """The submitted transaction does not prove a qualifying payment."""

    def __init__(self, rejection: Rejected):
        super().__init__(f"Payment verification failed: {rejection.detail or rejection.reason.value}")
        self.reason: RejectReason = rejection.reason
        self.rejection = rejection


class MembershipRequired(Exception):
    def __init__(self, wallet: str):
        super().__init__(f"{wallet} is not a member")
        self.wallet = wallet


@dataclass
class Admission:
    member: Member
    created: bool    # False on idempotent replay or a lost wallet race


def normalize_wallet(wallet: object) -> str:
    if not isinstance(wallet, str) or not ADDRESS_RE.match(wallet):
        raise InvalidWallet(wallet)
    return wallet.lower()


def to_token_units(amount: int, decimals: int) -> Decimal:
    return Decimal(amount).scaleb(-decimals)


def find_by_wallet(db: Session, wallet: str) -> Optional[Member]:
    return db.execute(
        select(Member).where(Member.wallet_address == wallet.lower())
    ).scalar_one_or_none()


def find_by_tx(db: Session, tx_hash: str) -> Optional[Member]:
    return db.execute(
        select(Member).where(Member.payment_tx_hash == tx_hash.lower())
    ).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------

def admit(
    db: Session,
    reader: ChainReader,
    settings: Settings,
    wallet_address: str,
    tx_hash: str,
) -> Admission:
    """
    Verify the payment behind ``tx_hash`` and grant membership to
    ``wallet_address``.

    Raises InvalidWallet / PaymentInvalid for client errors. ChainUnavailable
    and SQLAlchemy errors propagate; both are safe to retry.
    """
    wallet = normalize_wallet(wallet_address)

    result = verify_payment(
        reader,
        tx_hash,
        min_amount=settings.signup_usdc_amount,
        expected_recipient=settings.payment_collector,
        token_address=settings.usdc_address,
    )
    if isinstance(result, Rejected):
        logger.info(f"Signup rejected for {wallet}: {result.reason.value} ({result.detail})")
        raise PaymentInvalid(result)

    # Hex case must not let the same tx be consumed twice.
    tx = tx_hash.lower()

    consumed = find_by_tx(db, tx)
    if consumed is not None:
        logger.info(f"Replay of consumed tx {tx}; returning member {consumed.wallet_address}")
        return Admission(consumed, created=False)

    if result.payer != wallet:
        logger.warning(f"Payer {result.payer} differs from claimed wallet {wallet} for tx {tx}")

    member = Member(
        wallet_address=wallet,
        payment_tx_hash=tx,
        payment_amount=to_token_units(result.amount, settings.usdc_decimals),
        payment_currency=settings.payment_currency,
    )
    db.add(member)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_by_wallet(db, wallet) or find_by_tx(db, tx)
        if existing is None:
            raise
        logger.info(f"Duplicate admission for {wallet}; returning existing member")
        return Admission(existing, created=False)

    db.refresh(member)
    logger.info(f"New member {wallet} (tx {tx}, {member.payment_amount} {member.payment_currency})")
    return Admission(member, created=True)


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------

def is_member(db: Session, wallet_address: str) -> bool:
    if not isinstance(wallet_address, str) or not ADDRESS_RE.match(wallet_address):
        return False
    return find_by_wallet(db, wallet_address) is not None


def require_member(db: Session, wallet_address: str) -> str:
    """Return the canonical wallet, or raise MembershipRequired."""
    if not is_member(db, wallet_address):
        raise MembershipRequired(str(wallet_address))
    return wallet_address.lower()

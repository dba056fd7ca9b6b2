"""
USDC payment verification on Base mainnet.

Strategy: find an ERC-20 Transfer event in the transaction receipt, emitted
by the USDC contract, sent to the payment collector. Payer and amount come
only from the on-chain log, never from the client.

"Payment didn't qualify" is an expected outcome and is returned as a
``Rejected`` value. Only ``ChainUnavailable`` is raised.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .chain import HASH_RE, ChainReader, EventLog, ReceiptStatus
from .config import Settings

logger = logging.getLogger("agentfails.payments")

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = bytes.fromhex("ddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")


class RejectReason(str, Enum):
    MALFORMED_HASH = "malformed_hash"
    NOT_FOUND = "not_found"
    CHAIN_FAILURE = "chain_failure"
    NO_QUALIFYING_TRANSFER = "no_qualifying_transfer"
    UNDERPAYMENT = "underpayment"


@dataclass(frozen=True)
class Verified:
    payer: str      # lower-case 0x address
    amount: int     # smallest token unit


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    detail: str = ""
    expected: Optional[int] = None
    actual: Optional[int] = None


VerificationResult = Union[Verified, Rejected]


def _topic_address(topic: bytes) -> str:
    return "0x" + topic[-20:].hex()


def _transfer_fields(log: EventLog):
    """(sender, recipient, amount) for a well-formed ERC-20 Transfer log, else None."""
    if len(log.topics) < 3 or len(log.data) != 32:
        return None
    return _topic_address(log.topics[1]), _topic_address(log.topics[2]), int.from_bytes(log.data, "big")


def verify_payment(
    reader: ChainReader,
    tx_hash: str,
    min_amount: int,
    expected_recipient: str,
    token_address: str,
) -> VerificationResult:
    """
    Verify that ``tx_hash``:
      1. is confirmed and succeeded on-chain
      2. carries a Transfer event from ``token_address`` to ``expected_recipient``
      3. moves at least ``min_amount`` (raw units)

    The first log matching (1) and (2) is authoritative. A short first
    transfer is an underpayment even if a larger one follows.
    """
    if not isinstance(tx_hash, str) or not HASH_RE.match(tx_hash):
        return Rejected(RejectReason.MALFORMED_HASH, "Invalid tx hash format")

    receipt = reader.fetch_receipt(tx_hash)
    if receipt is None:
        return Rejected(RejectReason.NOT_FOUND, "Transaction not found or not yet confirmed")
    if receipt.status is not ReceiptStatus.SUCCESS:
        return Rejected(RejectReason.CHAIN_FAILURE, "Transaction failed on-chain")

    token = token_address.lower()
    collector = expected_recipient.lower()

    for log in receipt.logs:
        if log.emitter != token:
            continue
        if not log.topics or log.topics[0] != TRANSFER_TOPIC:
            continue
        fields = _transfer_fields(log)
        if fields is None:
            continue
        sender, recipient, amount = fields
        if recipient != collector:
            continue

        if amount < min_amount:
            return Rejected(
                RejectReason.UNDERPAYMENT,
                f"Underpayment: expected {min_amount} but got {amount}",
                expected=min_amount,
                actual=amount,
            )
        return Verified(payer=sender, amount=amount)

    return Rejected(
        RejectReason.NO_QUALIFYING_TRANSFER,
        f"No transfer to {expected_recipient} found in this tx",
    )


# ── x402 helpers ─────────────────────────────────────────────

def build_payment_required(
    amount: int,
    settings: Settings,
    description: str = "agentfails.wtf: payment required",
) -> dict:
    """402 Payment Required body in the x402 format (https://x402.org)."""
    return {
        "x402Version": 1,
        "accepts": [
            {
                "scheme": "exact",
                "network": "base-mainnet",
                "currency": settings.payment_currency,
                "amount": str(amount),
                "payTo": settings.payment_collector,
                "tokenAddress": settings.usdc_address,
                "description": description,
            }
        ],
        "error": "Payment required. Send USDC on Base then register with the tx hash.",
    }

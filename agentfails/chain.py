"""
Chain Reader - JSON-RPC access to Base mainnet.

Thin I/O boundary: one POST per call, no caching, no business logic.
Every response is decoded through an explicit schema; anything that does
not fit the schema is treated as a chain failure, never as data.
"""

import re
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple

import requests
from pydantic import BaseModel, ValidationError, field_validator

from .config import ADDRESS_RE, Settings

logger = logging.getLogger("agentfails.chain")

HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
HEX_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})*$")

# ERC-20 / ERC-721 balanceOf(address)
BALANCE_OF_SELECTOR = "0x70a08231"


class ChainUnavailable(Exception):
    """RPC transport or decoding failure. Transient; safe to retry."""


# ============================================================
# DOMAIN TYPES
# ============================================================

class ReceiptStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class EventLog:
    emitter: str                  # lower-case 0x address of the emitting contract
    topics: Tuple[bytes, ...]     # up to 4 x 32 bytes; topics[0] is the event signature
    data: bytes


@dataclass(frozen=True)
class TransactionReceipt:
    status: ReceiptStatus
    logs: Tuple[EventLog, ...]


# ============================================================
# RPC SCHEMA
# ============================================================

class RpcLog(BaseModel):
    address: str
    topics: List[str]
    data: str

    @field_validator("address")
    @classmethod
    def _address(cls, v: str) -> str:
        if not ADDRESS_RE.match(v):
            raise ValueError("log address is not a 20-byte hex address")
        return v.lower()

    @field_validator("topics")
    @classmethod
    def _topics(cls, v: List[str]) -> List[str]:
        if len(v) > 4:
            raise ValueError("a log carries at most 4 topics")
        for t in v:
            if not HASH_RE.match(t):
                raise ValueError("topic is not a 32-byte hex value")
        return v

    @field_validator("data")
    @classmethod
    def _data(cls, v: str) -> str:
        if not HEX_RE.match(v):
            raise ValueError("log data is not 0x-prefixed hex")
        return v


class RpcReceipt(BaseModel):
    status: Literal["0x1", "0x0"]
    logs: List[RpcLog]


def _hex_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:])


def decode_receipt(raw: Any) -> TransactionReceipt:
    """Validate a raw ``eth_getTransactionReceipt`` result. Fails closed."""
    try:
        parsed = RpcReceipt.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Malformed receipt from RPC: {e.error_count()} schema error(s)")
        raise ChainUnavailable("RPC returned a malformed receipt") from e

    return TransactionReceipt(
        status=ReceiptStatus.SUCCESS if parsed.status == "0x1" else ReceiptStatus.FAILURE,
        logs=tuple(
            EventLog(
                emitter=log.address,
                topics=tuple(_hex_bytes(t) for t in log.topics),
                data=_hex_bytes(log.data),
            )
            for log in parsed.logs
        ),
    )


# ============================================================
# READER
# ============================================================

class ChainReader:
    """
    Reads receipts and view calls from a JSON-RPC endpoint.

    Usage:
        reader = ChainReader.from_settings(settings)
        receipt = reader.fetch_receipt("0x...")   # None when unknown / pending
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        poll_attempts: int = 1,
        poll_interval: float = 2.0,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.poll_attempts = max(1, poll_attempts)
        self.poll_interval = poll_interval
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainReader":
        return cls(
            settings.rpc_url,
            timeout=settings.rpc_timeout,
            poll_attempts=settings.receipt_poll_attempts,
            poll_interval=settings.receipt_poll_interval,
        )

    def _rpc(self, method: str, params: list) -> Any:
        body = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            r = self._session.post(self.rpc_url, json=body, timeout=self.timeout)
            r.raise_for_status()
            payload = r.json()
        except requests.RequestException as e:
            logger.warning(f"RPC {method} transport failure: {e}")
            raise ChainUnavailable("RPC request failed") from e
        except ValueError as e:
            logger.warning(f"RPC {method} returned non-JSON body")
            raise ChainUnavailable("RPC returned malformed JSON") from e

        if not isinstance(payload, dict):
            raise ChainUnavailable("RPC returned malformed JSON")
        if payload.get("error") is not None:
            logger.warning(f"RPC {method} error: {payload['error']}")
            raise ChainUnavailable("RPC returned an error")
        if "result" not in payload:
            raise ChainUnavailable("RPC response has no result")
        return payload["result"]

    def fetch_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Return the confirmed receipt, or None if the tx is unknown or still pending."""
        for attempt in range(self.poll_attempts):
            raw = self._rpc("eth_getTransactionReceipt", [tx_hash])
            if raw is not None:
                return decode_receipt(raw)
            if attempt + 1 < self.poll_attempts:
                logger.debug(f"Receipt for {tx_hash} not available yet (attempt {attempt + 1})")
                time.sleep(self.poll_interval)
        return None

    def call(self, to: str, data: str) -> bytes:
        """``eth_call`` against the latest block; returns the raw return data."""
        raw = self._rpc("eth_call", [{"to": to, "data": data}, "latest"])
        if not isinstance(raw, str) or not HEX_RE.match(raw):
            raise ChainUnavailable("RPC returned malformed call result")
        return _hex_bytes(raw)

    def balance_of(self, contract: str, owner: str) -> int:
        """ERC-20 / ERC-721 ``balanceOf(owner)``."""
        data = BALANCE_OF_SELECTOR + owner.lower()[2:].rjust(64, "0")
        out = self.call(contract, data)
        if len(out) != 32:
            raise ChainUnavailable("balanceOf returned an unexpected payload")
        return int.from_bytes(out, "big")

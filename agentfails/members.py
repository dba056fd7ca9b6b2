# members.py
from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status as http_status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .chain import ADDRESS_RE, ChainReader, ChainUnavailable
from .config import Settings, get_settings
from .db import get_db
from .membership import InvalidWallet, PaymentInvalid, admit, find_by_wallet
from .payments import RejectReason
from .schemas import AnonsCheckOut, MemberOut, SignupIn

logger = logging.getLogger("agentfails.api")

router = APIRouter(tags=["members"])


@lru_cache(maxsize=4)
def _reader_for(settings: Settings) -> ChainReader:
    return ChainReader.from_settings(settings)


def get_chain_reader(settings: Settings = Depends(get_settings)) -> ChainReader:
    """One reader (and one pooled HTTP session) per Settings for the process."""
    return _reader_for(settings)


# ---------- Routes ----------

@router.post("/signup", status_code=http_status.HTTP_201_CREATED)
def signup(
    payload: SignupIn,
    response: Response,
    db: Session = Depends(get_db),
    reader: ChainReader = Depends(get_chain_reader),
    settings: Settings = Depends(get_settings),
):
    """
    Register a member after a USDC payment to the collector.

    201 new member; 200 when the tx was already consumed or the wallet is
    already a member (the existing record is returned); 422 when the tx does
    not prove a qualifying payment.
    """
    try:
        admission = admit(db, reader, settings, payload.wallet_address, payload.tx_hash)
    except InvalidWallet:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="Invalid wallet_address")
    except PaymentInvalid as e:
        rej = e.rejection
        body = {"error": str(e), "reason": rej.reason.value}
        if rej.reason is RejectReason.MALFORMED_HASH:
            raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=body)
        if rej.reason is RejectReason.UNDERPAYMENT:
            body.update(expected=str(rej.expected), actual=str(rej.actual))
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY, detail=body)
    except ChainUnavailable as e:
        raise HTTPException(
            status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Could not reach the chain: {e}. Retry shortly.",
        )
    except SQLAlchemyError:
        logger.exception("Signup storage failure")
        raise HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Storage failure")

    if not admission.created:
        response.status_code = http_status.HTTP_200_OK
    return {"member": MemberOut.model_validate(admission.member)}


@router.get("/members/{wallet}", response_model=MemberOut)
def get_member(wallet: str, db: Session = Depends(get_db)):
    if not ADDRESS_RE.match(wallet):
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="Invalid wallet")
    m = find_by_wallet(db, wallet)
    if not m:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="Not a member")
    return MemberOut.model_validate(m)


@router.get("/anons-check", response_model=AnonsCheckOut)
def anons_check(
    response: Response,
    wallet: str = Query(..., description="0x address to check"),
    reader: ChainReader = Depends(get_chain_reader),
    settings: Settings = Depends(get_settings),
):
    """Whether ``wallet`` holds an Anon NFT v2 on Base."""
    if not ADDRESS_RE.match(wallet):
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail="wallet query param must be a valid 0x address",
        )
    try:
        balance = reader.balance_of(settings.anons_nft_address, wallet)
    except ChainUnavailable:
        raise HTTPException(
            status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to check NFT balance",
        )
    response.headers["Cache-Control"] = "public, max-age=60, s-maxage=60"
    return AnonsCheckOut(is_holder=balance > 0, balance=balance)

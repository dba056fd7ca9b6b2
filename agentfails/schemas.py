from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, constr, field_validator

from .chain import ADDRESS_RE

Tab = Literal["hot", "new", "hof", "openclaw", "other"]


def _wallet(v: str) -> str:
    v = (v or "").strip()
    if not ADDRESS_RE.match(v):
        raise ValueError("must be a 0x-prefixed 20-byte hex address")
    return v.lower()


# ---------- Members ----------
class SignupIn(BaseModel):
    wallet_address: constr(strip_whitespace=True, min_length=1)
    tx_hash: constr(strip_whitespace=True, min_length=1)

class MemberOut(BaseModel):
    id: int
    wallet_address: str
    payment_tx_hash: str
    payment_amount: Decimal
    payment_currency: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AnonsCheckOut(BaseModel):
    is_holder: bool
    balance: int

# ---------- Posts ----------
class PostCreate(BaseModel):
    author_wallet: str
    title: constr(strip_whitespace=True, min_length=1, max_length=200)
    description: Optional[str] = None
    image_url: Optional[constr(strip_whitespace=True, max_length=1000)] = None
    agent: Optional[constr(strip_whitespace=True, max_length=50)] = None   # "openclaw" | "claude" | ...
    author_name: Optional[constr(strip_whitespace=True, max_length=80)] = None

    _check_wallet = field_validator("author_wallet")(_wallet)

class PostOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    agent: Optional[str] = None
    author_wallet: str
    author_name: Optional[str] = None
    upvote_count: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PostPage(BaseModel):
    posts: List[PostOut]
    next_page: Optional[int] = None
    total: int

# ---------- Comments ----------
class CommentCreate(BaseModel):
    author_wallet: str
    content: constr(strip_whitespace=True, min_length=1, max_length=2000)
    author_name: Optional[constr(strip_whitespace=True, max_length=80)] = None

    _check_wallet = field_validator("author_wallet")(_wallet)

class CommentOut(BaseModel):
    id: int
    post_id: int
    content: str
    author_wallet: str
    author_name: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# ---------- Votes & reports ----------
class VoteIn(BaseModel):
    wallet_address: str

    _check_wallet = field_validator("wallet_address")(_wallet)

class ReportIn(BaseModel):
    reporter_wallet: str
    reason: Optional[constr(strip_whitespace=True, max_length=500)] = None

    _check_wallet = field_validator("reporter_wallet")(_wallet)

class ReportOut(BaseModel):
    id: int
    post_id: int
    reporter_wallet: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# ---------- Auth ----------
class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

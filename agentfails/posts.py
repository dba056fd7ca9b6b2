# posts.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db import get_db
from .membership import MembershipRequired, require_member
from .models import Comment, Post, Report, Vote
from .payments import build_payment_required
from .schemas import (
    CommentCreate, CommentOut,
    PostCreate, PostOut, PostPage,
    ReportIn, Tab, VoteIn,
)

router = APIRouter(prefix="/posts", tags=["posts"])

PAGE_SIZE = 10

# ---------- Helpers ----------

def _gate(db: Session, settings: Settings, wallet: str) -> str:
    """Membership guard for gated writes; 402 with a pointer to /api/signup on denial."""
    try:
        return require_member(db, wallet)
    except MembershipRequired:
        body = build_payment_required(settings.signup_usdc_amount, settings)
        body.update(
            error="Membership required. Register at POST /api/signup with $2 USDC.",
            signup_endpoint="/api/signup",
        )
        raise HTTPException(status_code=http_status.HTTP_402_PAYMENT_REQUIRED, detail=body)


def _visible_post(db: Session, post_id: int) -> Post:
    p = db.get(Post, post_id)
    if not p or p.hidden:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="Post not found")
    return p

# ---------- Feed ----------

@router.get("", response_model=PostPage)
def list_posts(
    tab: Tab = "hot",
    page: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    stmt = select(Post).where(Post.hidden.is_(False))
    if tab == "new":
        stmt = stmt.order_by(Post.created_at.desc(), Post.id.desc())
    elif tab == "openclaw":
        stmt = stmt.where(Post.agent == "openclaw").order_by(Post.upvote_count.desc(), Post.id.desc())
    elif tab == "other":
        stmt = stmt.where(Post.agent != "openclaw").order_by(Post.upvote_count.desc(), Post.id.desc())
    else:  # hot | hof
        stmt = stmt.order_by(Post.upvote_count.desc(), Post.id.desc())

    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = db.execute(stmt.offset(page * PAGE_SIZE).limit(PAGE_SIZE)).scalars().all()
    return PostPage(
        posts=[PostOut.model_validate(p) for p in rows],
        next_page=page + 1 if len(rows) == PAGE_SIZE else None,
        total=total,
    )

# ⬇️ Specific routes FIRST (prevents /posts/{post_id} from catching "count")
@router.get("/count")
def post_count(db: Session = Depends(get_db)):
    n = db.execute(select(func.count(Post.id)).where(Post.hidden.is_(False))).scalar_one()
    return {"count": n}


@router.get("/{post_id}", response_model=PostOut)
def get_post(post_id: int, db: Session = Depends(get_db)):
    return PostOut.model_validate(_visible_post(db, post_id))


@router.post("", response_model=PostOut, status_code=http_status.HTTP_201_CREATED)
def create_post(
    payload: PostCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    wallet = _gate(db, settings, payload.author_wallet)
    p = Post(
        title=payload.title,
        description=payload.description,
        image_url=payload.image_url,
        agent=(payload.agent or "other").lower(),
        author_wallet=wallet,
        author_name=payload.author_name,
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return PostOut.model_validate(p)

# ---------- Comments ----------

@router.get("/{post_id}/comments", response_model=List[CommentOut])
def list_comments(post_id: int, db: Session = Depends(get_db)):
    _visible_post(db, post_id)
    rows = db.execute(
        select(Comment).where(Comment.post_id == post_id).order_by(Comment.created_at.asc(), Comment.id.asc())
    ).scalars().all()
    return [CommentOut.model_validate(c) for c in rows]


@router.post("/{post_id}/comments", response_model=CommentOut, status_code=http_status.HTTP_201_CREATED)
def add_comment(
    post_id: int,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    wallet = _gate(db, settings, payload.author_wallet)
    _visible_post(db, post_id)
    c = Comment(post_id=post_id, content=payload.content, author_wallet=wallet, author_name=payload.author_name)
    db.add(c)
    db.commit()
    db.refresh(c)
    return CommentOut.model_validate(c)

# ---------- Votes ----------

@router.post("/{post_id}/upvote")
def upvote(
    post_id: int,
    payload: VoteIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """One vote per (post, wallet). The counter moves in the same transaction as the vote row."""
    voter = _gate(db, settings, payload.wallet_address)
    _visible_post(db, post_id)
    db.add(Vote(post_id=post_id, voter_wallet=voter))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail="Already upvoted")
    db.execute(
        update(Post).where(Post.id == post_id).values(upvote_count=Post.upvote_count + 1)
    )
    db.commit()
    count = db.execute(select(Post.upvote_count).where(Post.id == post_id)).scalar_one()
    return {"ok": True, "upvote_count": count}

# ---------- Reports ----------

@router.post("/{post_id}/report")
def report_post(post_id: int, payload: ReportIn, db: Session = Depends(get_db)):
    _visible_post(db, post_id)
    db.add(Report(post_id=post_id, reporter_wallet=payload.reporter_wallet, reason=payload.reason))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return {"ok": True, "already_reported": True}
    return {"ok": True}

# admin.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status as http_status
from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import cookie_kwargs, create_token, require_admin, verify_admin
from .config import Settings, get_settings
from .db import get_db
from .models import Post, Report
from .schemas import LoginIn, ReportOut

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------- Session ----------

@router.post("/login")
def login(payload: LoginIn, resp: Response, settings: Settings = Depends(get_settings)):
    if not verify_admin(payload.email, payload.password, settings):
        raise HTTPException(status_code=http_status.HTTP_401_UNAUTHORIZED, detail="Bad credentials")
    resp.set_cookie(key="session", value=create_token(settings), **cookie_kwargs(settings))
    return {"ok": True}


@router.post("/logout")
def logout(resp: Response, settings: Settings = Depends(get_settings)):
    kw = cookie_kwargs(settings)
    resp.delete_cookie(key="session", path=kw["path"], httponly=True,
                       samesite=kw["samesite"], secure=kw["secure"])
    return {"ok": True}


@router.get("/session", dependencies=[Depends(require_admin)])
def session_probe():
    return {"authenticated": True}


# ---------- Moderation ----------

@router.get("/reports", response_model=List[ReportOut], dependencies=[Depends(require_admin)])
def list_reports(db: Session = Depends(get_db)):
    rows = db.execute(select(Report).order_by(Report.id.desc())).scalars().all()
    return [ReportOut.model_validate(r) for r in rows]


def _set_hidden(db: Session, post_id: int, hidden: bool) -> dict:
    p = db.get(Post, post_id)
    if not p:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="Not found")
    p.hidden = hidden
    db.commit()
    return {"ok": True, "post_id": post_id, "hidden": hidden}


@router.post("/posts/{post_id}/hide", dependencies=[Depends(require_admin)])
def hide_post(post_id: int, db: Session = Depends(get_db)):
    return _set_hidden(db, post_id, True)


@router.post("/posts/{post_id}/unhide", dependencies=[Depends(require_admin)])
def unhide_post(post_id: int, db: Session = Depends(get_db)):
    return _set_hidden(db, post_id, False)

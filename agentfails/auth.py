# agentfails/auth.py
import bcrypt
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from fastapi import Cookie, Depends, Header, HTTPException, status

from .config import Settings, get_settings

JWT_ALG = "HS256"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Admin verification (single moderator account via env)
# ─────────────────────────────────────────────────────────────────────────────

def _verify_password(plain: str, settings: Settings) -> bool:
    """
    Verify 'plain' against ADMIN_PASSWORD_HASH (bcrypt) or ADMIN_PASSWORD (raw).
    Prefer ADMIN_PASSWORD_HASH in prod.
    """
    if settings.admin_password_hash:
        try:
            return bcrypt.checkpw(plain.encode(), settings.admin_password_hash.encode())
        except ValueError:
            # malformed hash in env
            return False

    # raw password path (dev only)
    if settings.admin_password:
        return plain == settings.admin_password

    # no password configured → fail closed
    return False


def verify_admin(email: str, password: str, settings: Settings) -> bool:
    """Return True iff (email, password) match the configured admin."""
    if email.lower() != settings.admin_email.lower():
        return False
    return _verify_password(password, settings)


# ─────────────────────────────────────────────────────────────────────────────
# JWT helpers
# ─────────────────────────────────────────────────────────────────────────────

def create_token(settings: Settings) -> str:
    """Create a signed JWT for the admin session."""
    iat = _now_utc()
    exp = iat + timedelta(minutes=settings.jwt_expire_min)
    payload = {
        "sub": settings.admin_email,
        "iat": int(iat.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALG)


def _decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALG])
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired session: {str(e)}",
        )


def cookie_kwargs(settings: Settings) -> dict:
    if settings.is_prod:
        return dict(httponly=True, samesite="none", secure=True, path="/", max_age=60 * 60 * 24 * 7)
    return dict(httponly=True, samesite="lax", secure=False, path="/", max_age=60 * 60 * 24 * 7)


# ─────────────────────────────────────────────────────────────────────────────
# Auth dependency
# ─────────────────────────────────────────────────────────────────────────────

def require_admin(
    session: Optional[str] = Cookie(default=None),           # cookie "session"
    authorization: Optional[str] = Header(default=None),     # optional "Bearer <jwt>" fallback
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    Validate the admin session. Accepts either:
      - Cookie: session=<jwt>
      - Header: Authorization: Bearer <jwt>
    Returns decoded claims on success; raises 401 on failure.
    """
    token = session

    if not token and authorization:
        parts = authorization.strip().split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            token = parts[1]

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthenticated")

    claims = _decode_token(token, settings)

    if claims.get("sub") != settings.admin_email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized subject")

    return claims

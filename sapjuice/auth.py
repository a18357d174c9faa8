# sapjuice/auth.py
"""Customer credentials: argon2 password hashes, bearer JWTs and signup field rules."""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from .config import Settings, settings as default_settings

pwd = CryptContext(schemes=["argon2"], deprecated="auto")

PHONE_RE = re.compile(r"^\d{7,15}$")
MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    return pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd.verify(password, password_hash)
    except (UnknownHashError, ValueError):
        # rows seeded without a real hash can never log in
        return False


def issue_token(user_id: int, cfg: Settings | None = None) -> str:
    cfg = cfg or default_settings
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(minutes=cfg.jwt_expire_min),
    }
    return jwt.encode(claims, cfg.jwt_secret, algorithm=cfg.jwt_alg)


def read_token(token: str, cfg: Settings | None = None) -> Optional[int]:
    """User id from a bearer token, or None if it's missing, forged or expired."""
    cfg = cfg or default_settings
    if not token:
        return None
    try:
        claims = jwt.decode(token, cfg.jwt_secret, algorithms=[cfg.jwt_alg])
        return int(claims["sub"])
    except (JWTError, KeyError, TypeError, ValueError):
        return None


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_RE.match((phone or "").strip()))


def is_admin_email(email: str, admin_emails: Iterable[str]) -> bool:
    return (email or "").strip().lower() in {e.strip().lower() for e in admin_emails}

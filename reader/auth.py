"""Accounts and sessions: PBKDF2 passwords and a signed cookie (HMAC) with expiry."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import secrets
import time
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session, func, select

from komic.config import KomicConfig
from komic.database import get_session
from komic.errors import ConflictError, ValidationError
from komic.models import User, utcnow

SESSION_COOKIE_NAME = "komic_session"
PBKDF2_ITERATIONS = 260_000
MIN_PASSWORD_LENGTH = 8
USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ROLES = ("reader", "moderator", "admin")


def _b64_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64_decode(s: str) -> bytes:
    pad = 4 - (len(s) % 4)
    if pad != 4:
        s += "=" * pad
    return base64.urlsafe_b64decode(s)


# --- Passwords ---


def hash_password(password: str, salt: Optional[bytes] = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Return 'pbkdf2_sha256$<iterations>$<salt>$<hash>'."""
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_sha256${iterations}${_b64_encode(salt)}${_b64_encode(digest)}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt_b64, hash_b64 = encoded.split("$")
        if algorithm != "pbkdf2_sha256":
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), _b64_decode(salt_b64), int(iterations)
        )
    except (ValueError, TypeError):
        return False
    return hmac.compare_digest(_b64_encode(digest), hash_b64)


# --- Session cookie ---


def session_max_age_seconds(config: KomicConfig) -> int:
    return config.auth.session_days * 24 * 3600


def create_session_cookie_value(user_id: str, secret_key: str, max_age: int) -> str:
    """Build signed cookie value: base64(payload).base64(hmac)."""
    expiry = int(time.time()) + max_age
    payload = {"u": user_id, "e": expiry}
    payload_bytes = json.dumps(payload, sort_keys=True).encode("utf-8")
    payload_b64 = _b64_encode(payload_bytes)
    sig = hmac.new(secret_key.encode("utf-8"), payload_bytes, hashlib.sha256).digest()
    return f"{payload_b64}.{_b64_encode(sig)}"


def verify_session_cookie(cookie_value: Optional[str], secret_key: str) -> Optional[str]:
    """
    Verify signed cookie; return user id if valid and not expired, else None.
    """
    if not cookie_value or not secret_key:
        return None
    parts = cookie_value.split(".")
    if len(parts) != 2:
        return None
    try:
        payload_bytes = _b64_decode(parts[0])
        payload = json.loads(payload_bytes.decode("utf-8"))
        expiry = payload.get("e")
        user_id = payload.get("u")
        if expiry is None or user_id is None:
            return None
        if int(time.time()) > expiry:
            return None
        expected_sig = hmac.new(secret_key.encode("utf-8"), payload_bytes, hashlib.sha256).digest()
        if not hmac.compare_digest(_b64_encode(expected_sig), parts[1]):
            return None
        return user_id
    except (ValueError, KeyError, AttributeError, json.JSONDecodeError):
        return None


def set_session_cookie(response, user_id: str, config: KomicConfig) -> None:
    max_age = session_max_age_seconds(config)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=create_session_cookie_value(user_id, config.auth.secret_key, max_age),
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


# --- Accounts ---


def _validate_username(name: str) -> str:
    name = (name or "").strip()
    if not USERNAME_RE.match(name):
        raise ValidationError(
            "Username must be 3-32 characters of letters, digits, '.', '_' or '-'", field="name"
        )
    return name


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )


def _name_taken(session: Session, name: str, exclude_id: Optional[str] = None) -> bool:
    statement = select(User).where(func.lower(User.name) == name.lower())
    if exclude_id:
        statement = statement.where(User.id != exclude_id)
    return session.exec(statement).first() is not None


def register_user(session: Session, name: str, email: str, password: str, role: str = "reader") -> User:
    name = _validate_username(name)
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid e-mail address", field="email")
    _validate_password(password)
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}", field="role")
    if _name_taken(session, name):
        raise ConflictError("Username is already taken", field="name")
    if session.exec(select(User).where(User.email == email)).first():
        raise ConflictError("An account with this e-mail already exists", field="email")

    user = User(name=name, email=email, password_hash=hash_password(password), role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def authenticate(session: Session, login: str, password: str) -> Optional[User]:
    """Look the user up by name or e-mail and check the password."""
    login = (login or "").strip()
    if not login or not password:
        return None
    user = session.exec(
        select(User).where((func.lower(User.name) == login.lower()) | (User.email == login.lower()))
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def change_password(session: Session, user: User, current: str, new: str) -> None:
    if not verify_password(current or "", user.password_hash):
        raise ValidationError("Current password is incorrect", field="current_password")
    _validate_password(new)
    user.password_hash = hash_password(new)
    user.updated_at = utcnow()
    session.add(user)
    session.commit()


def change_username(session: Session, user: User, name: str) -> User:
    name = _validate_username(name)
    if _name_taken(session, name, exclude_id=user.id):
        raise ConflictError("Username is already taken", field="name")
    user.name = name
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


# --- Dependencies ---


def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """The signed-in user, or None."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    user_id = verify_session_cookie(cookie, request.app.state.config.auth.secret_key)
    if not user_id:
        return None
    return session.get(User, user_id)


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Unauthorized")
    return user

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rental_ledger.models.ledger_models import User
from rental_ledger.schemas.users import CreateUserRequest

from .activity_service import record_activity
from .errors import InvalidStateError, UnauthorizedError
from .transaction import ledger_transaction


USER_LOGGER = logging.getLogger("rental_ledger.users")

MIN_PASSWORD_LENGTH = 4


def password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def verify_password(user: User, password: str) -> bool:
    candidate = (password or "").strip()
    if len(candidate) < MIN_PASSWORD_LENGTH or not user.password_hash or not user.password_salt:
        return False
    return hmac.compare_digest(password_hash(candidate, user.password_salt), user.password_hash)


def authenticate(db: Session, username: str, password: str) -> dict[str, Any]:
    user = db.execute(select(User).where(User.username == (username or "").strip())).scalars().first()
    if not user or not verify_password(user, password):
        USER_LOGGER.warning("Failed login for username %r", username)
        raise UnauthorizedError("Invalid username or password.")
    USER_LOGGER.info("User %s authenticated", user.username)
    return serialize_user(user)


def require_role(db: Session, actor_id: int | None, role: str = "admin") -> User:
    actor = db.get(User, actor_id) if actor_id else None
    if not actor or actor.role != role:
        raise UnauthorizedError(f"{role.capitalize()} role required.")
    return actor


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "createdAt": user.created_at,
    }


def create_user(db: Session, payload: CreateUserRequest, actor_id: int | None = None) -> dict[str, Any]:
    username = payload.username.strip()
    password = payload.password.strip()
    if not username:
        raise InvalidStateError("Username is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidStateError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    with ledger_transaction(db):
        user_count = db.execute(select(func.count(User.id))).scalar_one()
        # The very first account bootstraps the system and needs no actor.
        if user_count:
            require_role(db, actor_id, "admin")
        if db.execute(select(User.id).where(User.username == username)).first():
            raise InvalidStateError("Username already exists.")
        salt = secrets.token_hex(16)
        user = User(
            username=username,
            password_hash=password_hash(password, salt),
            password_salt=salt,
            role=payload.role,
            created_at=datetime.now(),
        )
        db.add(user)
        db.flush()

    USER_LOGGER.info("User %s created with role %s", user.username, user.role)
    record_activity(
        db,
        actor_id or user.id,
        "CreateUser",
        "users",
        user.id,
        None,
        {"username": user.username, "role": user.role},
    )
    return serialize_user(user)


def list_users(db: Session) -> list[dict[str, Any]]:
    rows = db.execute(select(User).order_by(User.username)).scalars().all()
    return [serialize_user(row) for row in rows]

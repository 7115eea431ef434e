import logging
from typing import Optional

from flask import current_app
from werkzeug.security import generate_password_hash, check_password_hash

import gateway
from errors import AuthFailure, ConstraintError, DuplicateUsernameError, ValidationError
from models import User, db

logger = logging.getLogger(__name__)

# Columns that are safe to hand to views. password_hash is deliberately absent.
PUBLIC_USER_COLUMNS = "id, username, verified, avatar, created_at"

# Compared against when the username does not exist, so a miss costs the same
# as a wrong password. Built lazily because the hash method comes from config.
_dummy_hash = None


def hash_password(raw_password: str) -> str:
    """Return a salted hash using the configured method."""
    return generate_password_hash(
        raw_password, method=current_app.config["PASSWORD_HASH_METHOD"]
    )


def verify_password(password_hash: str, raw_password: str) -> bool:
    """Constant-time check of a raw password against a stored hash."""
    return check_password_hash(password_hash, raw_password)


def _find_credentials(username: str) -> Optional[dict]:
    return gateway.fetch_one(
        "SELECT id, password_hash FROM users WHERE username = :username",
        {"username": username},
        operation="find_user",
    )


def get_user(user_id: int) -> Optional[dict]:
    return gateway.fetch_one(
        f"SELECT {PUBLIC_USER_COLUMNS} FROM users WHERE id = :id",
        {"id": user_id},
        operation="get_user",
    )


def register(username: str, raw_password: str) -> int:
    """
    Create a new, unverified user and return its id.

    The existence query only spares us a failed insert in the common case;
    two concurrent registrations can both pass it, and then the unique index
    on users.username decides which one wins.
    """
    username = (username or "").strip()
    if not username or not raw_password:
        raise ValidationError("Username and password required.")

    if _find_credentials(username) is not None:
        raise DuplicateUsernameError()

    try:
        result = gateway.mutate(
            "INSERT INTO users (username, password_hash, verified) "
            "VALUES (:username, :password_hash, 0)",
            {"username": username, "password_hash": hash_password(raw_password)},
            operation="register",
        )
    except ConstraintError as exc:
        raise DuplicateUsernameError() from exc

    logger.info("Registered user %s (id=%s)", username, result.last_insert_id)
    return result.last_insert_id


def authenticate(username: str, raw_password: str) -> User:
    """
    Return the User for valid credentials, otherwise raise AuthFailure.

    Unknown usernames and wrong passwords are indistinguishable to the caller,
    both in the error message and in the time spent hashing.
    """
    global _dummy_hash

    username = (username or "").strip()
    row = _find_credentials(username) if username else None
    if row is None:
        if _dummy_hash is None:
            _dummy_hash = hash_password("not-a-real-password")
        verify_password(_dummy_hash, raw_password or "")
        logger.info("Failed login for %r", username)
        raise AuthFailure()

    if not verify_password(row["password_hash"], raw_password or ""):
        logger.info("Failed login for %r", username)
        raise AuthFailure()

    return db.session.get(User, row["id"])


def seed_administrator(username: str, raw_password: str) -> bool:
    """
    Create the reserved administrator account if it does not exist yet.

    Safe to call on every startup; returns True only when a row was inserted.
    """
    if _find_credentials(username) is not None:
        return False

    try:
        gateway.mutate(
            "INSERT INTO users (username, password_hash, verified) "
            "VALUES (:username, :password_hash, 1)",
            {"username": username, "password_hash": hash_password(raw_password)},
            operation="seed_administrator",
        )
    except ConstraintError:
        # Another worker seeded it between our check and insert.
        return False

    logger.info("Seeded administrator account %s", username)
    return True

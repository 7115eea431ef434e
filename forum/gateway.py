"""Thin persistence gateway over the Flask-SQLAlchemy session.

Three operations cover everything the services need: ``mutate`` for
INSERT/UPDATE/DELETE, ``fetch_one`` and ``fetch_many`` for SELECTs. Statements
are always SQL text with named bind parameters, for example::

    fetch_one("SELECT id FROM users WHERE username = :username",
              {"username": username})

Engine errors never leak out of this module: they are logged with the
operation name (parameters may hold credentials, so they are not logged) and
re-raised as ``StorageError``.
"""
import logging
from typing import NamedTuple, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import ConstraintError, StorageError
from models import db

logger = logging.getLogger(__name__)


class MutationResult(NamedTuple):
    rows_affected: int
    last_insert_id: Optional[int]


def _fail(operation: str, exc: SQLAlchemyError):
    db.session.rollback()
    if isinstance(exc, IntegrityError):
        logger.warning("Constraint violation during %s", operation)
        return ConstraintError(operation)
    logger.error("Storage failure during %s: %s", operation, type(exc).__name__)
    return StorageError(operation)


def mutate(statement: str, params: Optional[dict] = None, operation: str = "mutate") -> MutationResult:
    """Execute one write statement and commit it."""
    try:
        result = db.session.execute(text(statement), params or {})
        db.session.commit()
    except SQLAlchemyError as exc:
        raise _fail(operation, exc) from exc
    return MutationResult(result.rowcount, result.lastrowid)


def fetch_one(statement: str, params: Optional[dict] = None, operation: str = "fetch_one") -> Optional[dict]:
    """Return the first row as a dict, or None when nothing matches."""
    try:
        row = db.session.execute(text(statement), params or {}).mappings().first()
    except SQLAlchemyError as exc:
        raise _fail(operation, exc) from exc
    return dict(row) if row is not None else None


def fetch_many(statement: str, params: Optional[dict] = None, operation: str = "fetch_many") -> list:
    """Return every matching row as a list of dicts."""
    try:
        rows = db.session.execute(text(statement), params or {}).mappings().all()
    except SQLAlchemyError as exc:
        raise _fail(operation, exc) from exc
    return [dict(row) for row in rows]

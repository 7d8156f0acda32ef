# Overview: Row locking and retry helpers shared by every mutating service.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError


def lock_for_update(query):
    """
    Apply row-level locking before a read-modify-write.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (the whole database is locked
    by the writing transaction instead); PostgreSQL/MySQL honor it.
    """
    return query.with_for_update()


def get_for_update(model, entity_id: int):
    """Load one row by primary key under a row lock, or None."""
    return lock_for_update(db.session.query(model).filter(model.id == entity_id)).first()


class CommitConflictError(ConflictError):
    """The request's transaction could not be committed; nothing was persisted."""
    pass


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of DB work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic version conflicts). The session is rolled back before each
    retry, so `func` must redo all of its work, commit included.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def commit_or_conflict():
    """
    Commit the request's work once.

    A lock timeout or a stale version rolls the session back and raises
    CommitConflictError (409); the caller must resend the request.
    """
    try:
        db.session.commit()
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        raise CommitConflictError("Concurrent update detected; the change was not saved, retry the request") from exc

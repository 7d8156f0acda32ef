# Overview: Sequential human-readable document numbers (orders, transfers, returns).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


PREFIX_SALES_ORDER = "PV"
PREFIX_PURCHASE_ORDER = "PC"
PREFIX_TRANSFER = "TR"
PREFIX_RETURN = "DV"

DEFAULT_PAD = 6


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_value(prefix: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(prefix=prefix)
        .scalar()
    )


def next_document_number(prefix: str, *, pad: int = DEFAULT_PAD) -> str:
    """
    Atomically allocate the next number for `prefix` (e.g. "PV000123").

    The counter row is bumped with a single UPDATE, which takes the row lock
    for the rest of the caller's transaction; the number is therefore
    persisted together with the document that consumes it. The first call
    for a prefix inserts the row; a concurrent first insert is resolved by
    falling back to the UPDATE path.

    Gaps are possible when the consuming transaction rolls back.
    """
    if not prefix:
        raise DocumentSequenceError("prefix is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.prefix == prefix)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        number = _current_value(prefix) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(prefix=prefix, next_number=2))
            number = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate a number for prefix {prefix}")
            number = _current_value(prefix) - 1

    return f"{prefix}{number:0{pad}d}"

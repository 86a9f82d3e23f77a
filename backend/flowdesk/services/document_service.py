# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NumberingConflictError(DocumentSequenceError):
    """Raised when a document number cannot be allocated or is already taken."""


def next_sequence_value(*, owner_id: int, document_type: str, period: str) -> int:
    """
    Atomically allocate the next number for an owner/type/period.

    Increment-and-read on the (owner_id, document_type, period) row; the
    first allocation in a period inserts the row inside a savepoint so a
    concurrent first insert falls back to the increment path.

    Must run inside the caller's transaction (see
    concurrency.begin_write_transaction); the caller commits.
    """
    if not owner_id:
        raise DocumentSequenceError("owner_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period:
        raise DocumentSequenceError("period is required")

    key = {"owner_id": owner_id, "document_type": document_type, "period": period}

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.owner_id == owner_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _read_allocated() -> int:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(**key)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        return _read_allocated()

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(next_number=2, **key))
        return 1
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise NumberingConflictError(
                "Could not allocate document number",
                details=key,
            )
        return _read_allocated()


def next_document_number(
    *,
    owner_id: int,
    document_type: str,
    prefix: str,
    period: str,
    pad: int = 4,
) -> str:
    """Allocate and format "{prefix}-{period}-{seq}", e.g. INV-2024-0001."""
    next_num = next_sequence_value(owner_id=owner_id, document_type=document_type, period=period)
    return f"{prefix}-{period}-{next_num:0{pad}d}"


def invoice_period(moment) -> str:
    return f"{moment.year:04d}"


def sale_period(moment) -> str:
    return f"{moment.year:04d}{moment.month:02d}"

# Overview: Service-layer operations for document; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


QUOTATION_PREFIX = "QT"
SALES_ORDER_PREFIX = "SO"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_next_number(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Atomically allocate the next document number for a type.

    Runs inside the caller's transaction so the number is only consumed when
    the document that uses it commits. The first allocation for a type races
    on the unique document_type; the loser retries the UPDATE inside a
    savepoint instead of rolling back the caller's work.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_next_number(document_type) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_next_number(document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"

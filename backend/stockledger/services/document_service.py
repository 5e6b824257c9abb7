# Overview: Atomic document number allocation for inventories and movement references.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence


# Document types and their number prefixes
DOCUMENT_TYPE_PHYSICAL_INVENTORY = "PHYSICAL_INVENTORY"
DOCUMENT_TYPE_TRANSFER = "TRANSFER"
DOCUMENT_TYPE_ADJUSTMENT = "ADJUSTMENT"

DOCUMENT_PREFIXES = {
    DOCUMENT_TYPE_PHYSICAL_INVENTORY: "INV",
    DOCUMENT_TYPE_TRANSFER: "TRF",
    DOCUMENT_TYPE_ADJUSTMENT: "ADJ",
}


def _current_next_number(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )


def next_document_number(*, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next document number for a type, e.g. "INV-000042".

    Runs inside the caller's transaction: the UPDATE takes a row lock on
    (document_type) until commit, so two concurrent allocations serialize.
    A rolled-back caller releases its number back to the sequence.
    """
    if document_type not in DOCUMENT_PREFIXES:
        raise ValidationError(f"Unknown document type: {document_type}")
    prefix = DOCUMENT_PREFIXES[document_type]

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_next_number(document_type) - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another transaction created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_next_number(document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"

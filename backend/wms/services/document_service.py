# Overview: Document number allocation backed by the document_sequences table.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import date_stamp
from .concurrency import run_with_retry


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_sequence_value(*, document_type: str, period: str = "") -> int:
    """
    Atomically allocate the next integer for (document_type, period).

    The UPDATE ... SET next_number = next_number + 1 takes the row lock; the
    first allocation in a period inserts the row and falls back to the UPDATE
    if a concurrent request inserted it first.
    """
    def _op() -> int:
        if not document_type:
            raise DocumentSequenceError("document_type is required")

        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.document_type == document_type,
                DocumentSequence.period == period,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        def _read_allocated() -> int:
            db.session.flush()
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type, period=period)
                .scalar()
            )
            return current - 1

        result = db.session.execute(stmt)
        if result.rowcount:
            return _read_allocated()

        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(document_type=document_type, period=period, next_number=2)
                )
            return 1
        except IntegrityError:
            # Lost the insert race; only the savepoint is rolled back
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            return _read_allocated()

    return run_with_retry(_op)


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period_format: str = "%Y%m%d",
    pad: int = 4,
    at: datetime | None = None,
) -> str:
    """
    Allocate a dated document number: prefix + period + zero-padded counter.

    ADJ + YYYYMMDD + 0001, TR + YYYYMM + 0001, VTA + YYYYMMDD + 0001.
    The counter restarts with each period.
    """
    period = date_stamp(at, period_format) if period_format else ""
    number = next_sequence_value(document_type=document_type, period=period)
    return f"{prefix}{period}{number:0{pad}d}"


def next_adjustment_number() -> str:
    return next_document_number(document_type="STOCK_ADJUSTMENT", prefix="ADJ")


def next_transfer_number() -> str:
    return next_document_number(document_type="STOCK_TRANSFER", prefix="TR", period_format="%Y%m")


def next_sale_number() -> str:
    return next_document_number(document_type="SALE", prefix="VTA")


def next_invoice_number() -> str:
    return next_document_number(document_type="SALE_INVOICE", prefix="FAC")

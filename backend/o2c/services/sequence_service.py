# Overview: Service-layer operations for business key allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import BusinessKeySequence


ORDER_PREFIX = "ORD"
INVOICE_PREFIX = "INV"


class SequenceError(Exception):
    """Raised when a business key can not be allocated."""
    pass


def next_business_key(*, prefix: str, year: int, pad: int = 4) -> str:
    """
    Allocate the next "<PREFIX>-<YYYY>-<NNN...>" key inside the CURRENT transaction.

    The counter row is bumped with a single UPDATE, so the allocation is
    serialized with every other writer and rolled back together with the
    document that uses it. Numbers grow past the pad width (ORD-2026-1000).

    The caller owns the transaction; this function never commits.
    """
    if not prefix:
        raise SequenceError("prefix is required")

    stmt = (
        update(BusinessKeySequence)
        .where(
            BusinessKeySequence.prefix == prefix,
            BusinessKeySequence.year == year,
        )
        .values(next_number=BusinessKeySequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(BusinessKeySequence.next_number)
            .filter_by(prefix=prefix, year=year)
            .scalar()
        )
        next_num = current - 1
    else:
        # First key of the year: create the counter row under a savepoint so a
        # concurrent creator winning the insert does not discard our work.
        try:
            with db.session.begin_nested():
                db.session.add(BusinessKeySequence(prefix=prefix, year=year, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(BusinessKeySequence.next_number)
                .filter_by(prefix=prefix, year=year)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{year}-{next_num:0{pad}d}"


def peek_next_number(*, prefix: str, year: int) -> int:
    """Next number that would be issued; read-only, for diagnostics."""
    current = (
        db.session.query(BusinessKeySequence.next_number)
        .filter_by(prefix=prefix, year=year)
        .scalar()
    )
    return current or 1

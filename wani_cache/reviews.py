"""Locally created reviews and their reconciliation with the server.

Pending and confirmed reviews live in the same table. A pending row has
neither a server id nor ``available_at``; ``confirm`` sets both at once. The
submission queue is therefore just ``available_at IS NULL`` and can never
drift from the confirmed history.

The functions here run on the caller's transaction, except
``submit_pending`` which commits one transaction per accepted review.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import Connection, delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from .client import WaniClient
from .codec import ASSIGNMENTS, REVIEWS
from .db import transaction
from .errors import DecodeError, HttpStatusError, RateLimitError, StoreError, TransportError
from .resources import Review, ReviewStatus, format_timestamp

logger = logging.getLogger(__name__)

_table = REVIEWS.table


def new_review(assignment_id: int, incorrect_meaning_answers: int = 0, incorrect_reading_answers: int = 0,
               status: ReviewStatus = ReviewStatus.DONE,
               created_at: Optional[datetime.datetime] = None) -> Review:
    """A pending review as the user just finished it."""
    if incorrect_meaning_answers < 0 or incorrect_reading_answers < 0:
        raise ValueError("incorrect answer counts cannot be negative")
    return Review(
        assignment_id=assignment_id,
        created_at=created_at or datetime.datetime.now(datetime.UTC),
        incorrect_meaning_answers=incorrect_meaning_answers,
        incorrect_reading_answers=incorrect_reading_answers,
        status=status,
    )


def enqueue(conn: Connection, review: Review) -> int:
    """Insert an identifier-less row. Returns the store-assigned key."""
    if not review.is_pending or review.id is not None:
        raise ValueError("only pending reviews (no id, no available_at) can be enqueued")
    params = REVIEWS.params(review)
    result = conn.execute(insert(_table).values(**params))
    pk = result.inserted_primary_key[0]
    review.pk = pk
    logger.debug("Queued review for assignment %s (pk=%s)", review.assignment_id, pk)
    return pk


def confirm(conn: Connection, assignment_id: int, review_id: int, available_at: datetime.datetime,
            pk: Optional[int] = None) -> bool:
    """Turn a pending row for ``assignment_id`` into a confirmed one, in place.

    With ``pk`` exactly that row is confirmed; otherwise the oldest finished
    (DONE) pending row for the assignment. Returns False when there is no
    such row.
    """
    stmt = select(_table.c.pk).where(_table.c.assignment_id == assignment_id, _table.c.available_at.is_(None))
    if pk is not None:
        stmt = stmt.where(_table.c.pk == pk)
    else:
        stmt = stmt.where(_table.c.status == int(ReviewStatus.DONE)).order_by(_table.c.pk).limit(1)
    target = conn.execute(stmt).scalar()
    if target is None:
        logger.warning("No pending review for assignment %s to confirm", assignment_id)
        return False
    conn.execute(
        update(_table)
        .where(_table.c.pk == target)
        .values(id=review_id, available_at=format_timestamp(available_at))
    )
    logger.debug("Confirmed review %s for assignment %s", review_id, assignment_id)
    return True


def remove(conn: Connection, assignment_id: int) -> int:
    """Drop the pending row(s) for an assignment. Confirmed history is kept.

    Returns rows removed.
    """
    result = conn.execute(
        delete(_table).where(_table.c.assignment_id == assignment_id, _table.c.available_at.is_(None))
    )
    return result.rowcount


def pending_reviews(conn: Connection) -> List[Review]:
    """Reviews still waiting to be submitted, oldest first."""
    rows = conn.execute(REVIEWS.select_statement().where(_table.c.available_at.is_(None)).order_by(_table.c.pk))
    return [REVIEWS.decode(row) for row in rows]


def confirmed_reviews(conn: Connection, before: datetime.datetime) -> List[Review]:
    """Confirmed reviews whose ``available_at`` is at or before ``before``."""
    stmt = (
        REVIEWS.select_statement()
        .where(_table.c.available_at.is_not(None), _table.c.available_at <= format_timestamp(before))
        .order_by(_table.c.available_at)
    )
    return [REVIEWS.decode(row) for row in conn.execute(stmt)]


@dataclass
class SubmitReport:
    submitted: List[int] = field(default_factory=list)  # server review ids
    remaining: int = 0
    error: Optional[str] = None


def submit_pending(conn: Connection, client: WaniClient) -> SubmitReport:
    """Send every pending review to the server, confirming each as it is accepted.

    The confirmation and the server's updated assignment are committed
    together. AuthError propagates. Rate limiting or a transport failure
    stops the loop and leaves the rest queued for the next run.
    """
    with transaction(conn):
        queue = pending_reviews(conn)
    report = SubmitReport(remaining=len(queue))
    for review in queue:
        if review.status is not ReviewStatus.DONE:
            logger.debug("Review for assignment %s not finished yet; kept", review.assignment_id)
            continue
        try:
            accepted = client.submit_review(review)
        except (RateLimitError, TransportError) as e:
            report.error = str(e)
            logger.warning("Stopped submitting reviews: %s", e)
            break
        except (HttpStatusError, DecodeError) as e:
            report.error = str(e)
            logger.error("Review for assignment %s was not accepted: %s", review.assignment_id, e)
            continue
        try:
            with transaction(conn):
                confirm(conn, review.assignment_id, accepted.review_id, accepted.available_at, pk=review.pk)
                if accepted.assignment is not None:
                    ASSIGNMENTS.write(conn, [accepted.assignment])
        except SQLAlchemyError as e:
            raise StoreError(f"could not record review {accepted.review_id}: {e}") from e
        report.submitted.append(accepted.review_id)
        report.remaining -= 1
    return report

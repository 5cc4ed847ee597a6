"""Read-only queries over the cache for summaries."""
from __future__ import annotations

import datetime
from typing import Dict

from sqlalchemy import Connection, and_, exists, func, select

from .db import Base
from .codec import ASSIGNMENTS, REVIEWS
from .resources import format_timestamp

_assignments = ASSIGNMENTS.table
_reviews = REVIEWS.table


def due_lessons(conn: Connection, now: datetime.datetime) -> int:
    """Unlocked assignments the user has not started yet."""
    stmt = select(func.count()).select_from(_assignments).where(
        _assignments.c.unlocked_at.is_not(None),
        _assignments.c.unlocked_at <= format_timestamp(now),
        _assignments.c.started_at.is_(None),
        _assignments.c.hidden == 0,
    )
    return conn.execute(stmt).scalar_one()


def due_reviews(conn: Connection, now: datetime.datetime) -> int:
    """Assignments available for review, minus those already answered locally."""
    answered_locally = exists().where(and_(
        _reviews.c.assignment_id == _assignments.c.id,
        _reviews.c.available_at.is_(None),
    ))
    stmt = select(func.count()).select_from(_assignments).where(
        _assignments.c.available_at.is_not(None),
        _assignments.c.available_at <= format_timestamp(now),
        _assignments.c.srs_stage > 0,
        _assignments.c.hidden == 0,
        ~answered_locally,
    )
    return conn.execute(stmt).scalar_one()


def cache_summary(conn: Connection) -> Dict[str, int]:
    """Row count per cache table."""
    return {
        name: conn.execute(select(func.count()).select_from(table)).scalar_one()
        for name, table in sorted(Base.metadata.tables.items())
    }

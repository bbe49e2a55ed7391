"""Visitor ledger: one mutable aggregate row per visitor identifier.

Every visit is applied with a single ``INSERT ... ON CONFLICT DO UPDATE``
statement keyed on ``visitor_id``. Concurrent first visits for the same
identifier therefore collapse into one row and no increment is lost.

A client that retries a visit after a failure it could not observe is
counted twice. The counter reflects committed calls, not distinct visits.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy import case, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .database import storage_guard
from .errors import InvalidInput
from .models import VISITOR_METADATA_FIELDS, Visitor, check_column_lengths, utcnow

logger = logging.getLogger(__name__)

MAX_VISITOR_ID_LENGTH = 255

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class VisitorStatus:
    visitor_id: str
    is_new: bool
    total_visits: int


def validate_visitor_id(visitor_id: Optional[str]) -> str:
    if visitor_id is None or not str(visitor_id).strip():
        raise InvalidInput("visitorId is required")
    visitor_id = str(visitor_id)
    if len(visitor_id) > MAX_VISITOR_ID_LENGTH:
        raise InvalidInput(f"visitorId must be at most {MAX_VISITOR_ID_LENGTH} characters")
    return visitor_id


def _clean_metadata(metadata: Optional[Mapping[str, Optional[str]]]) -> dict:
    # Blank strings carry no information and must not pin a field forever.
    cleaned = {}
    for field in VISITOR_METADATA_FIELDS:
        value = (metadata or {}).get(field)
        if isinstance(value, str):
            value = value.strip() or None
        cleaned[field] = value
    return cleaned


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    try:
        return _UPSERT_INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"Atomic visitor upsert is not supported on {dialect!r}") from None


def record_visit(
    db: Session,
    visitor_id: Optional[str],
    metadata: Optional[Mapping[str, Optional[str]]] = None,
    now: Optional[datetime] = None,
) -> VisitorStatus:
    """Create the visitor or count another visit, in one atomic statement.

    Existing metadata always wins; incoming values only fill columns that are
    still null. ``last_visit`` never moves backwards.
    """
    visitor_id = validate_visitor_id(visitor_id)
    columns = _clean_metadata(metadata)
    check_column_lengths(Visitor, columns)
    now = now or utcnow()
    insert = _insert_for(db)

    stmt = insert(Visitor).values(
        visitor_id=visitor_id,
        first_visit=now,
        last_visit=now,
        total_visits=1,
        **columns,
    )
    excluded = stmt.excluded
    updates = {
        "total_visits": Visitor.total_visits + 1,
        "last_visit": case(
            (excluded.last_visit > Visitor.last_visit, excluded.last_visit),
            else_=Visitor.last_visit,
        ),
    }
    for field in VISITOR_METADATA_FIELDS:
        updates[field] = func.coalesce(getattr(Visitor, field), getattr(excluded, field))

    stmt = stmt.on_conflict_do_update(
        index_elements=[Visitor.visitor_id],
        set_=updates,
    ).returning(Visitor.total_visits)

    with storage_guard(db, "record_visit"):
        total_visits = db.execute(stmt).scalar_one()
        db.commit()

    is_new = total_visits == 1
    if is_new:
        logger.info("Recorded new visitor %s", visitor_id)
    return VisitorStatus(visitor_id=visitor_id, is_new=is_new, total_visits=total_visits)

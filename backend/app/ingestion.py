"""Append-only ingestion of events, page views and registrations."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import storage_guard
from .errors import InvalidInput, UnknownVisitor
from .ledger import validate_visitor_id
from .models import Base, Event, PageView, Registration, check_column_lengths

logger = logging.getLogger(__name__)

MAX_SCROLL_DEPTH = 100


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidInput(f"{name} is required")
    return value


def serialize_blob(payload: Any) -> Optional[str]:
    """Serialize an opaque payload as JSON text, exactly as the producer sent it."""
    if payload is None:
        return None
    try:
        return json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("Payload must be JSON serializable without NaN or Infinity") from exc


def deserialize_blob(blob: Optional[str]) -> Any:
    if blob is None:
        return None
    return json.loads(blob)


def _append(db: Session, fact: Base, operation: str) -> int:
    visitor_id = fact.visitor_id
    check_column_lengths(
        type(fact), {column.key: getattr(fact, column.key) for column in fact.__table__.columns}
    )
    with storage_guard(db, operation):
        db.add(fact)
        try:
            db.flush()
        except IntegrityError as exc:
            # Required columns are validated beforehand, so only the visitor
            # foreign key can be violated here.
            db.rollback()
            logger.warning("Rejected %s for unknown visitor %s", operation, visitor_id)
            raise UnknownVisitor(visitor_id) from exc
        fact_id = fact.id
        db.commit()
    return fact_id


def append_event(
    db: Session,
    visitor_id: Optional[str],
    event_type: Optional[str],
    event_data: Any = None,
    page_url: Optional[str] = None,
    session_id: Optional[str] = None,
) -> int:
    event = Event(
        visitor_id=validate_visitor_id(visitor_id),
        event_type=_require(event_type, "eventType"),
        event_data=serialize_blob(event_data),
        page_url=page_url,
        session_id=session_id,
    )
    return _append(db, event, "append_event")


def append_page_view(
    db: Session,
    visitor_id: Optional[str],
    page_url: Optional[str],
    page_title: Optional[str] = None,
    session_id: Optional[str] = None,
    time_spent: Optional[int] = None,
    scroll_depth: Optional[int] = None,
) -> int:
    time_spent = time_spent or 0
    scroll_depth = scroll_depth or 0
    if time_spent < 0:
        raise InvalidInput("timeSpent must not be negative")
    if not 0 <= scroll_depth <= MAX_SCROLL_DEPTH:
        raise InvalidInput(f"scrollDepth must be between 0 and {MAX_SCROLL_DEPTH}")

    page_view = PageView(
        visitor_id=validate_visitor_id(visitor_id),
        page_url=_require(page_url, "pageUrl"),
        page_title=page_title,
        session_id=session_id,
        time_spent=time_spent,
        scroll_depth=scroll_depth,
    )
    return _append(db, page_view, "append_page_view")


def append_registration(
    db: Session,
    visitor_id: Optional[str],
    email: Optional[str],
    name: Optional[str] = None,
    phone: Optional[str] = None,
    registration_data: Any = None,
) -> int:
    registration = Registration(
        visitor_id=validate_visitor_id(visitor_id),
        email=_require(email, "email"),
        name=name,
        phone=phone,
        registration_data=serialize_blob(registration_data),
    )
    return _append(db, registration, "append_registration")

"""Read side for the operator dashboard: counters, listings and visitor timelines.

Listings are not snapshotted. Rows written between two page fetches may
shift across page boundaries; every query orders on a unique tie-breaker so
that a quiet store always pages through each row exactly once.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import schemas
from .database import storage_guard
from .errors import InvalidInput, NotFound
from .ingestion import deserialize_blob
from .models import Event, PageView, Registration, Visitor, utcnow

RECENT_VISITOR_WINDOW = timedelta(hours=24)


def _count(db: Session, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model)
    if criteria:
        stmt = stmt.where(*criteria)
    return db.execute(stmt).scalar_one()


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise InvalidInput("page must be at least 1")
    if limit < 1:
        raise InvalidInput("limit must be at least 1")


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit)


def _event_fields(event: Event) -> dict:
    return {
        "id": event.id,
        "visitor_id": event.visitor_id,
        "event_type": event.event_type,
        "event_data": deserialize_blob(event.event_data),
        "page_url": event.page_url,
        "session_id": event.session_id,
        "timestamp": event.timestamp,
    }


def _registration_fields(registration: Registration) -> dict:
    return {
        "id": registration.id,
        "visitor_id": registration.visitor_id,
        "email": registration.email,
        "name": registration.name,
        "phone": registration.phone,
        "registration_data": deserialize_blob(registration.registration_data),
        "registered_at": registration.registered_at,
    }


def get_stats(db: Session, now: Optional[datetime] = None) -> schemas.StatsOut:
    """Scalar counters; ``visitorsLast24h`` is a trailing window ending now."""
    cutoff = (now or utcnow()) - RECENT_VISITOR_WINDOW
    with storage_guard(db, "get_stats"):
        return schemas.StatsOut(
            total_visitors=_count(db, Visitor),
            total_events=_count(db, Event),
            total_registrations=_count(db, Registration),
            total_page_views=_count(db, PageView),
            visitors_last_24h=_count(db, Visitor, Visitor.last_visit > cutoff),
        )


def list_visitors(db: Session, page: int = 1, limit: int = 50) -> schemas.VisitorPage:
    _check_paging(page, limit)
    stmt = (
        select(Visitor)
        .order_by(Visitor.last_visit.desc(), Visitor.visitor_id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    with storage_guard(db, "list_visitors"):
        visitors = db.execute(stmt).scalars().all()
        total = _count(db, Visitor)

    return schemas.VisitorPage(
        items=[schemas.VisitorOut.model_validate(visitor) for visitor in visitors],
        total=total,
        page=page,
        total_pages=_total_pages(total, limit),
    )


def list_registrations(db: Session, page: int = 1, limit: int = 50) -> schemas.RegistrationPage:
    """Newest registrations first, each with its visitor's location and device."""
    _check_paging(page, limit)
    stmt = (
        select(
            Registration,
            Visitor.ip_address,
            Visitor.city,
            Visitor.country,
            Visitor.device_type,
        )
        .outerjoin(Visitor, Registration.visitor_id == Visitor.visitor_id)
        .order_by(Registration.registered_at.desc(), Registration.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    with storage_guard(db, "list_registrations"):
        rows = db.execute(stmt).all()
        total = _count(db, Registration)

    items = [
        schemas.RegistrationListItem(
            **_registration_fields(registration),
            ip_address=ip_address,
            city=city,
            country=country,
            device_type=device_type,
        )
        for registration, ip_address, city, country, device_type in rows
    ]
    return schemas.RegistrationPage(
        items=items,
        total=total,
        page=page,
        total_pages=_total_pages(total, limit),
    )


def list_recent_events(db: Session, limit: int = 100) -> schemas.RecentEventsOut:
    if limit < 1:
        raise InvalidInput("limit must be at least 1")
    stmt = (
        select(Event, Visitor.ip_address, Visitor.city, Visitor.country)
        .outerjoin(Visitor, Event.visitor_id == Visitor.visitor_id)
        .order_by(Event.timestamp.desc(), Event.id.desc())
        .limit(limit)
    )
    with storage_guard(db, "list_recent_events"):
        rows = db.execute(stmt).all()

    return schemas.RecentEventsOut(
        items=[
            schemas.RecentEventOut(**_event_fields(event), ip_address=ip_address, city=city, country=country)
            for event, ip_address, city, country in rows
        ]
    )


def get_visitor_detail(db: Session, visitor_id: str) -> schemas.VisitorDetailOut:
    """Assemble one visitor's timeline from four independent reads.

    Facts are immutable, so only the ledger row is a point-in-time snapshot.
    """
    with storage_guard(db, "get_visitor_detail"):
        visitor = db.get(Visitor, visitor_id)
        if visitor is None:
            raise NotFound(f"Visitor {visitor_id!r} not found")

        events = db.execute(
            select(Event)
            .where(Event.visitor_id == visitor_id)
            .order_by(Event.timestamp.desc(), Event.id.desc())
        ).scalars().all()
        page_views = db.execute(
            select(PageView)
            .where(PageView.visitor_id == visitor_id)
            .order_by(PageView.viewed_at.desc(), PageView.id.desc())
        ).scalars().all()
        registration = db.execute(
            select(Registration)
            .where(Registration.visitor_id == visitor_id)
            .order_by(Registration.registered_at.desc(), Registration.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    return schemas.VisitorDetailOut(
        visitor=schemas.VisitorOut.model_validate(visitor),
        events=[schemas.EventOut(**_event_fields(event)) for event in events],
        page_views=[schemas.PageViewOut.model_validate(page_view) for page_view in page_views],
        registration=(
            schemas.RegistrationOut(**_registration_fields(registration)) if registration else None
        ),
    )

"""SQLAlchemy models for the visitor ledger and the append-only fact tables."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base

from .errors import InvalidInput

Base = declarative_base()

# Metadata columns filled on first observation and never overwritten afterwards.
VISITOR_METADATA_FIELDS = (
    "ip_address",
    "country",
    "city",
    "region",
    "user_agent",
    "device_type",
    "browser",
    "os",
    "referrer",
    "landing_page",
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def check_column_lengths(model, values) -> None:
    """Reject strings wider than their bounded ``String`` column."""
    columns = model.__table__.columns
    for name, value in values.items():
        length = getattr(columns[name].type, "length", None)
        if length is not None and isinstance(value, str) and len(value) > length:
            raise InvalidInput(f"{name} must be at most {length} characters")


class Visitor(Base):
    __tablename__ = "visitors"

    visitor_id = Column(String(255), primary_key=True)
    first_visit = Column(DateTime, default=utcnow, nullable=False)
    last_visit = Column(DateTime, default=utcnow, nullable=False, index=True)
    total_visits = Column(Integer, default=1, nullable=False)
    ip_address = Column(String(64), nullable=True)
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    region = Column(String(100), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_type = Column(String(50), nullable=True)
    browser = Column(String(100), nullable=True)
    os = Column(String(100), nullable=True)
    referrer = Column(Text, nullable=True)
    landing_page = Column(Text, nullable=True)


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(String(255), ForeignKey("visitors.visitor_id"), nullable=False, index=True)
    event_type = Column(String(100), index=True, nullable=False)
    event_data = Column(Text, nullable=True)
    page_url = Column(Text, nullable=True)
    session_id = Column(String(255), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class PageView(Base):
    __tablename__ = "page_views"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(String(255), ForeignKey("visitors.visitor_id"), nullable=False, index=True)
    page_url = Column(Text, nullable=False)
    page_title = Column(Text, nullable=True)
    session_id = Column(String(255), nullable=True)
    time_spent = Column(Integer, default=0, nullable=False)
    scroll_depth = Column(Integer, default=0, nullable=False)
    viewed_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(String(255), ForeignKey("visitors.visitor_id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    registration_data = Column(Text, nullable=True)
    registered_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

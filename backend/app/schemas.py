"""Pydantic models for request and response bodies."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer


def _to_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# Stored timestamps are naive UTC; render them as absolute ISO-8601 strings.
UtcDatetime = Annotated[datetime, PlainSerializer(_to_utc_iso, return_type=str, when_used="json")]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Inbound submissions


class UserData(_CamelModel):
    ip: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    user_agent: Optional[str] = Field(None, alias="userAgent")
    device_type: Optional[str] = Field(None, alias="deviceType")
    browser: Optional[str] = None
    os: Optional[str] = None
    referrer: Optional[str] = None
    landing_page: Optional[str] = Field(None, alias="landingPage")

    def to_columns(self) -> Dict[str, Optional[str]]:
        """Map the client field names onto visitor ledger columns."""
        columns = self.model_dump(exclude={"ip"})
        columns["ip_address"] = self.ip
        return columns


class VisitIn(_CamelModel):
    visitor_id: str = Field(..., alias="visitorId", description="Stable client-generated identifier")
    user_data: UserData = Field(default_factory=UserData, alias="userData")


class EventIn(_CamelModel):
    visitor_id: str = Field(..., alias="visitorId")
    event_type: str = Field(..., alias="eventType", description="Free-form tag, e.g. click or scroll")
    event_data: Any = Field(None, alias="eventData", description="Opaque payload stored verbatim")
    page_url: Optional[str] = Field(None, alias="pageUrl")
    session_id: Optional[str] = Field(None, alias="sessionId")


class PageViewIn(_CamelModel):
    visitor_id: str = Field(..., alias="visitorId")
    page_url: str = Field(..., alias="pageUrl")
    page_title: Optional[str] = Field(None, alias="pageTitle")
    session_id: Optional[str] = Field(None, alias="sessionId")
    time_spent: Optional[int] = Field(None, alias="timeSpent", description="Seconds on page")
    scroll_depth: Optional[int] = Field(None, alias="scrollDepth", description="Percentage, 0-100")


class RegistrationIn(_CamelModel):
    visitor_id: str = Field(..., alias="visitorId")
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    registration_data: Any = Field(None, alias="registrationData")


class LoginIn(BaseModel):
    email: str
    password: str


# Ingestion acknowledgements


class VisitOut(_CamelModel):
    success: bool = True
    is_new: bool = Field(..., alias="isNew")


class FactOut(BaseModel):
    success: bool = True
    id: int


# Dashboard reads


class VisitorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    visitor_id: str
    first_visit: UtcDatetime
    last_visit: UtcDatetime
    total_visits: int
    ip_address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    user_agent: Optional[str] = None
    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    referrer: Optional[str] = None
    landing_page: Optional[str] = None


class EventOut(BaseModel):
    id: int
    visitor_id: str
    event_type: str
    event_data: Any = None
    page_url: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: UtcDatetime


class RecentEventOut(EventOut):
    ip_address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class PageViewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    visitor_id: str
    page_url: str
    page_title: Optional[str] = None
    session_id: Optional[str] = None
    time_spent: int
    scroll_depth: int
    viewed_at: UtcDatetime


class RegistrationOut(BaseModel):
    id: int
    visitor_id: str
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    registration_data: Any = None
    registered_at: UtcDatetime


class RegistrationListItem(RegistrationOut):
    ip_address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    device_type: Optional[str] = None


class StatsOut(_CamelModel):
    total_visitors: int = Field(..., alias="totalVisitors")
    total_events: int = Field(..., alias="totalEvents")
    total_registrations: int = Field(..., alias="totalRegistrations")
    total_page_views: int = Field(..., alias="totalPageViews")
    visitors_last_24h: int = Field(..., alias="visitorsLast24h")


class _PageOut(_CamelModel):
    total: int
    page: int
    total_pages: int = Field(..., alias="totalPages")


class VisitorPage(_PageOut):
    items: List[VisitorOut]


class RegistrationPage(_PageOut):
    items: List[RegistrationListItem]


class RecentEventsOut(BaseModel):
    items: List[RecentEventOut]


class VisitorDetailOut(_CamelModel):
    visitor: VisitorOut
    events: List[EventOut]
    page_views: List[PageViewOut] = Field(..., alias="pageViews")
    registration: Optional[RegistrationOut] = None


class SessionOut(BaseModel):
    success: bool = True
    email: str


class VerifyOut(BaseModel):
    authenticated: bool = True
    email: str

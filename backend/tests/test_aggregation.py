from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from backend.app import aggregation, ingestion, ledger
from backend.app.errors import InvalidInput, NotFound, StorageUnavailable
from backend.app.models import Visitor, utcnow


def test_stats_count_distinct_visitors_and_facts(db):
    ledger.record_visit(db, "first", {})
    ledger.record_visit(db, "second", {})
    ledger.record_visit(db, "first", {})
    for idx in range(5):
        ingestion.append_event(db, "first" if idx % 2 else "second", "click")
    ingestion.append_page_view(db, "first", "/")
    ingestion.append_registration(db, "second", "b@example.com")

    stats = aggregation.get_stats(db)

    assert stats.total_visitors == 2
    assert stats.total_events == 5
    assert stats.total_page_views == 1
    assert stats.total_registrations == 1
    assert stats.visitors_last_24h == 2


def test_recent_visitor_window_is_trailing(db):
    now = utcnow()
    ledger.record_visit(db, "recent", {}, now=now - timedelta(hours=23))
    ledger.record_visit(db, "stale", {}, now=now - timedelta(hours=25))

    assert aggregation.get_stats(db, now=now).visitors_last_24h == 1
    assert aggregation.get_stats(db, now=now + timedelta(hours=2)).visitors_last_24h == 0


def test_visitors_are_listed_most_recent_first(db):
    now = utcnow()
    ledger.record_visit(db, "old", {}, now=now - timedelta(days=2))
    ledger.record_visit(db, "new", {}, now=now)
    ledger.record_visit(db, "middle", {}, now=now - timedelta(days=1))

    listing = aggregation.list_visitors(db, page=1, limit=10)

    assert [visitor.visitor_id for visitor in listing.items] == ["new", "middle", "old"]


def test_pages_cover_every_visitor_exactly_once(db):
    now = utcnow()
    for idx in range(7):
        # Identical timestamps for some rows exercise the tie-breaker.
        ledger.record_visit(db, f"visitor-{idx}", {}, now=now - timedelta(minutes=idx // 2))

    first = aggregation.list_visitors(db, page=1, limit=3)
    assert first.total == 7
    assert first.total_pages == 3

    seen = []
    for page in range(1, first.total_pages + 1):
        seen.extend(visitor.visitor_id for visitor in aggregation.list_visitors(db, page=page, limit=3).items)

    assert len(seen) == 7
    assert len(set(seen)) == 7
    assert aggregation.list_visitors(db, page=4, limit=3).items == []


def test_empty_listing_has_no_pages(db):
    listing = aggregation.list_visitors(db, page=1, limit=50)

    assert listing.total == 0
    assert listing.total_pages == 0
    assert listing.items == []


@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0)])
def test_invalid_paging_is_rejected(db, page, limit):
    with pytest.raises(InvalidInput):
        aggregation.list_visitors(db, page=page, limit=limit)


def test_registrations_are_enriched_with_visitor_fields(db):
    ledger.record_visit(db, "located", {"ip_address": "203.0.113.9", "city": "SP", "country": "BR", "device_type": "mobile"})
    ledger.record_visit(db, "anonymous", {})
    ingestion.append_registration(db, "located", "a@example.com", registration_data={"plan": "pro"})
    ingestion.append_registration(db, "anonymous", "b@example.com")

    listing = aggregation.list_registrations(db, page=1, limit=10)

    assert listing.total == 2
    assert listing.total_pages == 1
    newest, oldest = listing.items
    assert newest.email == "b@example.com"
    assert newest.city is None
    assert newest.device_type is None
    assert oldest.email == "a@example.com"
    assert oldest.registration_data == {"plan": "pro"}
    assert (oldest.ip_address, oldest.city, oldest.country, oldest.device_type) == (
        "203.0.113.9",
        "SP",
        "BR",
        "mobile",
    )


def test_recent_events_include_visitor_location(db):
    ledger.record_visit(db, "abc", {"city": "SP", "country": "BR"})
    ingestion.append_event(db, "abc", "click")
    ingestion.append_event(db, "abc", "scroll")

    events = aggregation.list_recent_events(db, limit=1).items

    assert len(events) == 1
    assert events[0].event_type == "scroll"
    assert events[0].city == "SP"


def test_visitor_detail_assembles_timeline(db):
    ledger.record_visit(db, "abc", {"country": "BR"})
    ledger.record_visit(db, "abc", {})
    ingestion.append_event(db, "abc", "click", {"target": "cta"})
    ingestion.append_event(db, "abc", "scroll", {"depth": 80})
    ingestion.append_page_view(db, "abc", "/", time_spent=12, scroll_depth=80)
    ingestion.append_page_view(db, "abc", "/pricing")
    ingestion.append_registration(db, "abc", "first@example.com")
    ingestion.append_registration(db, "abc", "second@example.com", registration_data=["a", "b"])

    detail = aggregation.get_visitor_detail(db, "abc")

    assert detail.visitor.total_visits == 2
    assert detail.visitor.country == "BR"
    assert [event.event_type for event in detail.events] == ["scroll", "click"]
    assert detail.events[0].event_data == {"depth": 80}
    assert [view.page_url for view in detail.page_views] == ["/pricing", "/"]
    assert detail.registration.email == "second@example.com"
    assert detail.registration.registration_data == ["a", "b"]


def test_visitor_detail_without_registration(db):
    ledger.record_visit(db, "abc", {})

    detail = aggregation.get_visitor_detail(db, "abc")

    assert detail.registration is None
    assert detail.events == []
    assert detail.page_views == []


def test_visitor_detail_for_missing_visitor(db):
    with pytest.raises(NotFound):
        aggregation.get_visitor_detail(db, "missing-id")


def test_detail_reflects_latest_ledger_state(db):
    ledger.record_visit(db, "abc", {})
    db.execute(update(Visitor).where(Visitor.visitor_id == "abc").values(total_visits=41))
    db.commit()
    ledger.record_visit(db, "abc", {})

    assert aggregation.get_visitor_detail(db, "abc").visitor.total_visits == 42


def test_registration_pages_cover_every_row_exactly_once(db):
    ledger.record_visit(db, "abc", {"country": "BR"})
    emails = [f"user-{idx}@example.com" for idx in range(5)]
    for email in emails:
        ingestion.append_registration(db, "abc", email)

    first = aggregation.list_registrations(db, page=1, limit=2)
    assert first.total == 5
    assert first.total_pages == 3

    seen = []
    for page in range(1, first.total_pages + 1):
        listing = aggregation.list_registrations(db, page=page, limit=2)
        assert listing.page == page
        seen.extend(item.email for item in listing.items)

    assert seen == list(reversed(emails))
    assert aggregation.list_registrations(db, page=4, limit=2).items == []


@pytest.mark.parametrize(
    "call",
    [
        lambda db: aggregation.get_stats(db),
        lambda db: aggregation.list_visitors(db, page=1, limit=10),
        lambda db: aggregation.list_registrations(db, page=1, limit=10),
        lambda db: aggregation.list_recent_events(db, limit=10),
        lambda db: aggregation.get_visitor_detail(db, "abc"),
    ],
    ids=["stats", "visitors", "registrations", "events", "detail"],
)
def test_storage_outage_during_reads_is_reported(db, monkeypatch, call):
    ledger.record_visit(db, "abc", {})

    def fail(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(db, "execute", fail)
    monkeypatch.setattr(db, "get", fail)

    with pytest.raises(StorageUnavailable):
        call(db)

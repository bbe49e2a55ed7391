"""Domain errors raised by the ledger, ingestion and aggregation services."""
from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for failures surfaced to callers of the analytics services."""


class InvalidInput(AnalyticsError):
    """Raised when a submission is missing a required field or is malformed."""


class UnknownVisitor(AnalyticsError):
    """Raised when a fact references a visitor that has not been recorded."""

    def __init__(self, visitor_id: str) -> None:
        super().__init__(f"Visitor {visitor_id!r} has not been recorded")
        self.visitor_id = visitor_id


class NotFound(AnalyticsError):
    """Raised when a detail lookup targets a visitor that does not exist."""


class Unauthenticated(AnalyticsError):
    """Raised when a credential is missing, malformed, expired or wrong."""


class StorageUnavailable(AnalyticsError):
    """Raised on transient backend failures. Callers may retry."""

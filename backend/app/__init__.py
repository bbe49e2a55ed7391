"""Visitor reconciliation and analytics aggregation service."""

"""Example client that records a visit and a few facts, then reads the stats."""
from __future__ import annotations

import argparse
import os
import uuid

import requests


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send a sample visit to the analytics API")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("ANALYTICS_API_URL", "http://127.0.0.1:8000"),
        help="Analytics API base URL (default: %(default)s or ANALYTICS_API_URL)",
    )
    parser.add_argument(
        "--visitor-id",
        default=None,
        help="Visitor identifier to reuse (a random one is generated otherwise)",
    )
    parser.add_argument("--admin-email", default=os.environ.get("ANALYTICS_ADMIN_EMAIL"))
    parser.add_argument("--admin-password", default=os.environ.get("ANALYTICS_ADMIN_PASSWORD"))
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    visitor_id = args.visitor_id or f"visitor-{uuid.uuid4()}"
    session_id = f"session-{uuid.uuid4()}"

    visit = {
        "visitorId": visitor_id,
        "userData": {
            "country": "BR",
            "city": "Sao Paulo",
            "deviceType": "desktop",
            "browser": "Firefox",
            "os": "Linux",
            "landingPage": "/",
        },
    }
    response = requests.post(f"{args.api_url}/api/analytics/visitor", json=visit, timeout=10)
    response.raise_for_status()
    print("Visit recorded:", response.json())

    page_view = {"visitorId": visitor_id, "pageUrl": "/", "pageTitle": "Home", "sessionId": session_id}
    response = requests.post(f"{args.api_url}/api/analytics/pageview", json=page_view, timeout=10)
    response.raise_for_status()

    event = {
        "visitorId": visitor_id,
        "eventType": "click",
        "eventData": {"element": "cta-button"},
        "pageUrl": "/",
        "sessionId": session_id,
    }
    response = requests.post(f"{args.api_url}/api/analytics/event", json=event, timeout=10)
    response.raise_for_status()
    print("Event stored:", response.json())

    if not (args.admin_email and args.admin_password):
        return

    with requests.Session() as session:
        login = session.post(
            f"{args.api_url}/api/admin/login",
            json={"email": args.admin_email, "password": args.admin_password},
            timeout=10,
        )
        login.raise_for_status()
        stats = session.get(f"{args.api_url}/api/admin/stats", timeout=10)
        stats.raise_for_status()
        print("Stats:", stats.json())


if __name__ == "__main__":
    main()

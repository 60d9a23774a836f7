"""Centralised wall-clock helpers — single source of truth for 'now'.

Scheduling decisions (token expiry, webhook renewal, meeting windows) all
read the clock through here so tests can patch one function.
"""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def today_str() -> str:
    """ISO 8601 date string: '2026-02-23'"""
    return now_utc().strftime("%Y-%m-%d")


def month_year() -> str:
    """Month + year for prompt context: 'February 2026'"""
    return now_utc().strftime("%B %Y")


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by Google APIs."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(value))


def to_rfc3339(value: datetime) -> str:
    return ensure_aware(value).astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

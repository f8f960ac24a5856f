"""Working days lost between two dates, excluding weekends and UK bank holidays.

Bank holidays come from the GOV.UK feed and are held in-process for
``BANK_HOLIDAYS_CACHE_TTL_SECONDS``. If the feed cannot be fetched or parsed
the static England-and-Wales list below is used instead.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date, timedelta
from typing import Iterable

import httpx

from .config import settings

logger = logging.getLogger(__name__)

FALLBACK_BANK_HOLIDAYS: frozenset[date] = frozenset(
    {
        date(2026, 1, 1),  # New Year's Day
        date(2026, 4, 3),  # Good Friday
        date(2026, 4, 6),  # Easter Monday
        date(2026, 5, 4),  # Early May bank holiday
        date(2026, 5, 25),  # Spring bank holiday
        date(2026, 8, 31),  # Summer bank holiday
        date(2026, 12, 25),  # Christmas Day
        date(2026, 12, 28),  # Boxing Day (substitute)
    }
)

_cache_lock = threading.Lock()
_cache: tuple[frozenset[date], float] | None = None


class BankHolidayFeedError(RuntimeError):
    pass


def _parse_feed(payload: object, division: str) -> frozenset[date]:
    if not isinstance(payload, dict):
        raise BankHolidayFeedError("Bank holiday feed is not a JSON object")
    section = payload.get(division)
    events = section.get("events") if isinstance(section, dict) else None
    if not isinstance(events, list):
        raise BankHolidayFeedError(f"Bank holiday feed has no events for {division}")
    try:
        return frozenset(date.fromisoformat(event["date"]) for event in events)
    except (KeyError, TypeError, ValueError) as exc:
        raise BankHolidayFeedError(f"Malformed bank holiday entry: {exc}") from exc


def fetch_bank_holidays(client: httpx.Client | None = None) -> frozenset[date]:
    """Fetch the feed once; raises on any HTTP or shape failure."""
    owns_client = client is None
    http = client or httpx.Client(timeout=settings.BANK_HOLIDAYS_TIMEOUT)
    try:
        resp = http.get(settings.BANK_HOLIDAYS_URL)
        resp.raise_for_status()
        return _parse_feed(resp.json(), settings.BANK_HOLIDAYS_DIVISION)
    finally:
        if owns_client:
            http.close()


def get_bank_holidays(client: httpx.Client | None = None) -> frozenset[date]:
    global _cache
    with _cache_lock:
        now = time.monotonic()
        if _cache is not None and now - _cache[1] < settings.BANK_HOLIDAYS_CACHE_TTL_SECONDS:
            return _cache[0]

        try:
            holidays = fetch_bank_holidays(client)
        except (httpx.HTTPError, BankHolidayFeedError, ValueError) as exc:
            logger.warning(
                "Failed to fetch bank holidays from %s, using fallback: %s",
                settings.BANK_HOLIDAYS_URL,
                exc,
            )
            holidays = FALLBACK_BANK_HOLIDAYS

        _cache = (holidays, now)
        return holidays


def clear_bank_holiday_cache() -> None:
    global _cache
    with _cache_lock:
        _cache = None


def calculate_working_days_lost(
    start: date, end: date, holidays: Iterable[date] | None = None
) -> int:
    """Count weekdays in ``[start, end]`` that are not bank holidays; 0 if end < start."""
    if end < start:
        return 0
    excluded = frozenset(holidays) if holidays is not None else get_bank_holidays()
    count = 0
    day = start
    while day <= end:
        if day.weekday() < 5 and day not in excluded:
            count += 1
        day += timedelta(days=1)
    return count

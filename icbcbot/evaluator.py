from __future__ import annotations

import datetime as dt

from icbcbot.domain import ConfigError, DateWindow, DecodeError, SlotResult

DATE_FORMAT = "%Y-%m-%d"


def parse_date(value: str) -> dt.date:
    return dt.datetime.strptime(value.strip(), DATE_FORMAT).date()


def build_window(start: str | None, end: str | None) -> DateWindow:
    """Validate caller-supplied dates. Any parse failure is fatal for the run."""
    try:
        start_date = parse_date(start) if start else dt.date.today()
    except ValueError as e:
        raise ConfigError(f"Invalid start date: {start!r}. Expected YYYY-MM-DD.") from e

    if not end:
        return DateWindow(start=start_date)

    try:
        end_date = parse_date(end)
    except ValueError as e:
        raise ConfigError(f"Invalid end date: {end!r}. Expected YYYY-MM-DD.") from e

    if end_date < start_date:
        raise ConfigError(f"End date {end} is before start date {start_date.isoformat()}")

    return DateWindow(start=start_date, end=end_date)


def satisfies(slot: SlotResult, window: DateWindow) -> bool:
    # Only the upper bound is checked; the lower bound is sent to the portal as examDate.
    try:
        slot_date = parse_date(slot.date)
    except (ValueError, AttributeError) as e:
        raise DecodeError(f"Unparseable slot date {slot.date!r} for location {slot.location_id}") from e

    if window.end is None:
        return True
    return slot_date <= window.end

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field


class IcbcBotError(RuntimeError):
    """Base class for every error raised by the booking client."""


class NetworkError(IcbcBotError):
    """Connection, timeout or HTTP status failure talking to a remote service."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(IcbcBotError):
    """Response body is not JSON or does not have the expected shape."""


class AuthError(IcbcBotError):
    """Login failed or did not yield a bearer token. Fatal for the run."""


class ConfigError(IcbcBotError):
    """Invalid caller-supplied configuration. Fatal for the run."""


@dataclass(frozen=True)
class Credentials:
    last_name: str
    license_number: str
    keyword: str | None = None


@dataclass(frozen=True)
class SearchCriteria:
    location_id: int
    exam_type: str
    exam_date: str  # YYYY-MM-DD
    last_name: str
    license_number: str
    days_of_week: str = "[0,1,2,3,4,5,6]"
    parts_of_day: str = "[0,1]"
    ignore_reserve_time: bool = False


@dataclass(frozen=True)
class SlotResult:
    """Best available slot at one location, as ranked by the portal."""

    location_id: int
    date: str  # YYYY-MM-DD
    day_of_week: str
    start_time: str


@dataclass(frozen=True)
class NotFound:
    """The portal returned no slot for the location. Not an error."""

    location_id: int


@dataclass(frozen=True)
class DateWindow:
    start: dt.date
    end: dt.date | None = None


SKIPPED = "skipped"
NOTIFIED = "notified"


@dataclass(frozen=True)
class LocationOutcome:
    location_id: int
    status: str  # NOTIFIED | SKIPPED
    reason: str | None = None
    slot: SlotResult | None = None


@dataclass
class RunReport:
    outcomes: list[LocationOutcome] = field(default_factory=list)

    @property
    def notified(self) -> list[LocationOutcome]:
        return [o for o in self.outcomes if o.status == NOTIFIED]

    @property
    def skipped(self) -> list[LocationOutcome]:
        return [o for o in self.outcomes if o.status == SKIPPED]

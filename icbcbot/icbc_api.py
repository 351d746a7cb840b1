from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from icbcbot.domain import (
    AuthError,
    Credentials,
    DecodeError,
    NetworkError,
    NotFound,
    SearchCriteria,
    SlotResult,
)
from icbcbot.transport import Transport

logger = logging.getLogger(__name__)

BASE_URL = "https://onlinebusiness.icbc.com/deas-api/v1"
LOGIN_URL = f"{BASE_URL}/webLogin/webLogin"
APPOINTMENTS_URL = f"{BASE_URL}/web/getAvailableAppointments"


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    url: str
    body: dict[str, Any]
    headers: dict[str, str]


class LoginRequest:
    """PUT webLogin: exchanges driver credentials for a bearer token."""

    method = "PUT"
    url = LOGIN_URL
    headers = {
        "Pragma": "no-cache",
        "Cache-Control": "no-cache, no-store",
        "Referer": "https://onlinebusiness.icbc.com/webdeas-ui/login;type=driver",
        "Expires": "0",
    }

    def __init__(self, credentials: Credentials):
        self.credentials = credentials

    def build(self) -> PreparedRequest:
        body: dict[str, Any] = {
            "drvrLastName": self.credentials.last_name,
            "licenceNumber": self.credentials.license_number,
        }
        if self.credentials.keyword:
            body["keyword"] = self.credentials.keyword
        return PreparedRequest(self.method, self.url, body, dict(self.headers))

    def decode(self, data: Any, headers: httpx.Headers) -> tuple[str, dict[str, Any]]:
        # Only the header matters; the body shape is not part of the login contract.
        values = headers.get_list("Authorization")
        token = values[0].strip() if values else ""
        if not token:
            raise AuthError("Login response has no Authorization header")
        return token, data if isinstance(data, dict) else {}


class AppointmentSearchRequest:
    """POST getAvailableAppointments for a single location."""

    method = "POST"
    url = APPOINTMENTS_URL
    headers = {
        "Referer": "https://onlinebusiness.icbc.com/webdeas-ui/booking",
    }

    def __init__(self, criteria: SearchCriteria, token: str):
        self.criteria = criteria
        self.token = token

    def build(self) -> PreparedRequest:
        c = self.criteria
        body: dict[str, Any] = {
            "aPosID": c.location_id,
            "examType": c.exam_type,
            "examDate": c.exam_date,
            "ignoreReserveTime": c.ignore_reserve_time,
            "prfDaysOfWeek": c.days_of_week,
            "prfPartsOfDay": c.parts_of_day,
            "lastName": c.last_name,
            "licenseNumber": c.license_number,
        }
        headers = dict(self.headers)
        headers["Authorization"] = self.token
        return PreparedRequest(self.method, self.url, body, headers)

    def decode(self, data: Any, headers: httpx.Headers) -> SlotResult | NotFound:
        location_id = self.criteria.location_id
        if not isinstance(data, list):
            raise DecodeError(f"Appointments response for location {location_id} is not a list: {type(data).__name__}")
        if not data:
            return NotFound(location_id=location_id)

        # The portal returns slots best-first; only the first one is used.
        first = data[0]
        try:
            appointment_dt = first["appointmentDt"]
            date = appointment_dt["date"]
            day_of_week = appointment_dt["dayOfWeek"]
            start_time = first["startTm"]
        except (KeyError, TypeError) as e:
            raise DecodeError(f"Unexpected appointment shape for location {location_id}: missing {e}") from e

        for name, value in (("date", date), ("dayOfWeek", day_of_week), ("startTm", start_time)):
            if not isinstance(value, str):
                raise DecodeError(f"Appointment field {name} for location {location_id} is not a string")

        return SlotResult(location_id=location_id, date=date, day_of_week=day_of_week, start_time=start_time)


def _send(transport: Transport, request: PreparedRequest) -> tuple[Any, httpx.Headers]:
    return transport.send(request.method, request.url, request.body, request.headers)


def authenticate(transport: Transport, credentials: Credentials) -> tuple[str, dict[str, Any]]:
    login = LoginRequest(credentials)
    logger.info("Logging into ICBC portal: %s", login.url)
    try:
        data, headers = _send(transport, login.build())
        return login.decode(data, headers)
    except (NetworkError, DecodeError) as e:
        raise AuthError(f"Login failed ({type(e).__name__}: {e})") from e


def query(transport: Transport, criteria: SearchCriteria, token: str) -> SlotResult | NotFound:
    if not token:
        raise AuthError("Refusing to query appointments without a bearer token")

    search = AppointmentSearchRequest(criteria, token)
    logger.info("Querying free appointments for location %s", criteria.location_id)
    data, headers = _send(transport, search.build())
    return search.decode(data, headers)

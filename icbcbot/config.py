from __future__ import annotations

import datetime as dt
import os
from dataclasses import dataclass
from typing import Any, Mapping

from dotenv import load_dotenv

from icbcbot.domain import ConfigError, Credentials, DateWindow, SearchCriteria
from icbcbot.evaluator import build_window


def _split_csv(raw: str) -> list[str]:
    parts = [p.strip() for p in raw.split(",")]
    return [p for p in parts if p]


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # Groups/supergroups have negative ids, so only zero is rejected.
    seen: set[str] = set()
    result: list[str] = []
    for p in _split_csv(raw):
        try:
            value = int(p)
        except ValueError as e:
            raise ConfigError(f"Invalid TELEGRAM_CHAT_ID value: {p!r}. Expected integer chat id.") from e

        if value == 0:
            raise ConfigError("Invalid TELEGRAM_CHAT_ID value: '0' is not a valid chat id")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    if not result:
        raise ConfigError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")

    return tuple(result)


def _parse_location_ids(values: list[str] | tuple[str, ...] | str) -> tuple[int, ...]:
    # Repeated --location-id flags and comma lists both work; order is kept, duplicates dropped.
    raw = values if isinstance(values, str) else ",".join(values)

    result: list[int] = []
    for p in _split_csv(raw):
        try:
            location_id = int(p)
        except ValueError as e:
            raise ConfigError(f"Invalid location id: {p!r}. Expected an integer.") from e

        if location_id <= 0:
            raise ConfigError(f"Invalid location id: {p!r}. Location ids are positive.")

        if location_id not in result:
            result.append(location_id)

    if not result:
        raise ConfigError("No location id given. Provide at least one with ICBC_LOCATION_IDS or --location-id.")

    return tuple(result)


@dataclass(frozen=True)
class Settings:
    last_name: str
    license_number: str
    location_ids: tuple[int, ...]

    keyword: str | None = None
    exam_type: str = "5-R-1"
    start_date: str | None = None  # YYYY-MM-DD, defaults to today
    end_date: str | None = None

    # Portal preference masks, sent verbatim
    days_of_week: str = "[0,1,2,3,4,5,6]"
    parts_of_day: str = "[0,1]"

    # Alert channels; a channel is used only when all of its values are set
    pushover_token: str | None = None
    pushover_user: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = ()

    request_timeout_seconds: float = 20.0

    # How many times a single location query is attempted on network failure.
    query_retry_attempts: int = 1

    @property
    def credentials(self) -> Credentials:
        return Credentials(last_name=self.last_name, license_number=self.license_number, keyword=self.keyword)

    @property
    def window(self) -> DateWindow:
        return build_window(self.start_date, self.end_date)

    def criteria_for(self, location_id: int) -> SearchCriteria:
        return SearchCriteria(
            location_id=location_id,
            exam_type=self.exam_type,
            exam_date=self.start_date or dt.date.today().isoformat(),
            last_name=self.last_name,
            license_number=self.license_number,
            days_of_week=self.days_of_week,
            parts_of_day=self.parts_of_day,
        )


def _lookup(overrides: Mapping[str, Any], key: str, env_name: str, default: Any = None) -> Any:
    # CLI values win over the environment.
    value = overrides.get(key)
    if value not in (None, "", [], ()):
        return value
    env_value = os.getenv(env_name)
    if env_value is not None and env_value.strip():
        return env_value.strip()
    return default


def _require(overrides: Mapping[str, Any], key: str, env_name: str) -> Any:
    value = _lookup(overrides, key, env_name)
    if value is None:
        raise ConfigError(f"Missing required setting: {env_name} (or --{key.replace('_', '-')})")
    return value


def _int(name: str, raw: Any) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def load_settings(dotenv_path: str | None = None, overrides: Mapping[str, Any] | None = None) -> Settings:
    # Prefer .env in the working directory; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)
    overrides = overrides or {}

    location_ids = _parse_location_ids(_require(overrides, "location_id", "ICBC_LOCATION_IDS"))

    start_date = _lookup(overrides, "start_date", "ICBC_START_DATE", dt.date.today().isoformat())
    end_date = _lookup(overrides, "end_date", "ICBC_END_DATE")
    # Fail fast on bad dates, before any network call.
    build_window(start_date, end_date)

    telegram_bot_token = _lookup(overrides, "telegram_bot_token", "TELEGRAM_BOT_TOKEN")
    telegram_chat_ids: tuple[str, ...] = ()
    raw_chat_ids = _lookup(overrides, "telegram_chat_id", "TELEGRAM_CHAT_ID")
    if telegram_bot_token and raw_chat_ids:
        telegram_chat_ids = _parse_telegram_chat_ids(raw_chat_ids)

    try:
        request_timeout_seconds = float(_lookup(overrides, "request_timeout_seconds", "REQUEST_TIMEOUT_SECONDS", 20.0))
    except ValueError as e:
        raise ConfigError("REQUEST_TIMEOUT_SECONDS must be a number") from e
    if request_timeout_seconds <= 0:
        raise ConfigError("REQUEST_TIMEOUT_SECONDS must be > 0")

    query_retry_attempts = _int("QUERY_RETRY_ATTEMPTS", _lookup(overrides, "query_retry_attempts", "QUERY_RETRY_ATTEMPTS", 1))
    if query_retry_attempts < 1:
        raise ConfigError("QUERY_RETRY_ATTEMPTS must be >= 1")

    return Settings(
        last_name=_require(overrides, "last_name", "ICBC_LAST_NAME"),
        license_number=_require(overrides, "license_number", "ICBC_LICENSE_NUMBER"),
        location_ids=location_ids,
        keyword=_lookup(overrides, "keyword", "ICBC_KEYWORD"),
        exam_type=_lookup(overrides, "exam_type", "ICBC_EXAM_TYPE", "5-R-1"),
        start_date=start_date,
        end_date=end_date,
        days_of_week=_lookup(overrides, "days_of_week", "ICBC_DAYS_OF_WEEK", "[0,1,2,3,4,5,6]"),
        parts_of_day=_lookup(overrides, "parts_of_day", "ICBC_PARTS_OF_DAY", "[0,1]"),
        pushover_token=_lookup(overrides, "pushover_token", "PUSHOVER_TOKEN"),
        pushover_user=_lookup(overrides, "pushover_user", "PUSHOVER_USER"),
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
        request_timeout_seconds=request_timeout_seconds,
        query_retry_attempts=query_retry_attempts,
    )

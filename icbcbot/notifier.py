from __future__ import annotations

import logging
from functools import partial
from typing import Any, Callable

import httpx

from icbcbot.config import Settings
from icbcbot.domain import SlotResult

logger = logging.getLogger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"
TELEGRAM_API_URL = "https://api.telegram.org"


def format_slot_message(slot: SlotResult) -> str:
    return (
        "Found appointment:\n"
        f"\tlocation: {slot.location_id}, date: {slot.date} on {slot.day_of_week}, time: {slot.start_time}"
    )


class DeliveryError(RuntimeError):
    """An alert channel did not accept the message."""


def _post_alert(channel: str, url: str, *, timeout_seconds: float, **request_kwargs: Any) -> dict[str, Any]:
    # Every sink fails the same way: DeliveryError naming the channel, never a raw httpx error.
    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            r = client.post(url, **request_kwargs)
    except httpx.HTTPError as e:
        raise DeliveryError(f"{channel}: request failed ({type(e).__name__}: {e})") from e

    try:
        data = r.json()
    except ValueError:
        data = None

    if r.is_error:
        raise DeliveryError(f"{channel}: HTTP {r.status_code}: {data if data is not None else r.text}")
    if not isinstance(data, dict):
        raise DeliveryError(f"{channel}: unexpected response body")
    return data


def send_pushover_message(*, token: str, user: str, message: str, timeout_seconds: float = 20.0) -> None:
    data = _post_alert(
        "pushover",
        PUSHOVER_URL,
        timeout_seconds=timeout_seconds,
        data={"token": token, "user": user, "message": message},
    )
    if data.get("status") != 1:
        raise DeliveryError(f"pushover: rejected ({data.get('errors') or data})")


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    data = _post_alert(
        "telegram",
        f"{TELEGRAM_API_URL}/bot{bot_token}/sendMessage",
        timeout_seconds=timeout_seconds,
        json={"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
    )
    if not data.get("ok", False):
        raise DeliveryError(f"telegram: rejected for chat_id={chat_id} ({data.get('description') or data})")


class Notifier:
    """Hands alert text to every configured channel.

    Delivery is best-effort: failures are logged and reported through the
    return value, never raised and never retried. The next invocation of the
    checker is the retry.
    """

    def __init__(self, settings: Settings):
        self._settings = settings

    def _deliveries(self, message: str) -> list[tuple[str, Callable[[], None]]]:
        s = self._settings
        timeout = s.request_timeout_seconds
        result: list[tuple[str, Callable[[], None]]] = []

        if s.pushover_token and s.pushover_user:
            send = partial(
                send_pushover_message,
                token=s.pushover_token,
                user=s.pushover_user,
                message=message,
                timeout_seconds=timeout,
            )
            result.append(("pushover", send))

        if s.telegram_bot_token:
            for chat_id in s.telegram_chat_ids:
                send = partial(
                    send_telegram_message,
                    bot_token=s.telegram_bot_token,
                    chat_id=chat_id,
                    text=message,
                    timeout_seconds=timeout,
                )
                result.append((f"telegram chat_id={chat_id}", send))

        return result

    @property
    def channels(self) -> list[str]:
        s = self._settings
        result: list[str] = []
        if s.pushover_token and s.pushover_user:
            result.append("pushover")
        if s.telegram_bot_token and s.telegram_chat_ids:
            result.append("telegram")
        return result

    def notify(self, message: str) -> bool:
        deliveries = self._deliveries(message)
        if not deliveries:
            logger.info("No alert channel configured; message only logged.")
            return True

        ok = True
        for label, deliver in deliveries:
            try:
                deliver()
            except DeliveryError as e:
                # Keep going: one channel failing must not starve the others.
                logger.warning("Failed to send %s message (%s)", label, e)
                ok = False
        return ok

from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest

from icbcbot.config import Settings
from icbcbot.domain import SlotResult
from icbcbot.notifier import (
    PUSHOVER_URL,
    TELEGRAM_API_URL,
    DeliveryError,
    Notifier,
    format_slot_message,
    send_pushover_message,
    send_telegram_message,
)


def _settings(**kwargs) -> Settings:
    # Tests must never contain real tokens or send anything over the network.
    values = dict(last_name="Doe", license_number="1234567", location_ids=(274,))
    values.update(kwargs)
    return Settings(**values)


def _mock_httpx_client(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    real_client = httpx.Client
    monkeypatch.setattr(
        "icbcbot.notifier.httpx.Client",
        lambda timeout: real_client(transport=httpx.MockTransport(handler), timeout=timeout),
    )


def test_format_slot_message() -> None:
    slot = SlotResult(location_id=274, date="2024-02-15", day_of_week="Thursday", start_time="09:15")

    assert format_slot_message(slot) == (
        "Found appointment:\n\tlocation: 274, date: 2024-02-15 on Thursday, time: 09:15"
    )


def test_send_pushover_message_posts_form(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, httpx.Request] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={"status": 1, "request": "abc"})

    _mock_httpx_client(monkeypatch, handler)

    send_pushover_message(token="T", user="U", message="hello")

    request = seen["request"]
    assert str(request.url) == PUSHOVER_URL
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert request.content == b"token=T&user=U&message=hello"


def test_send_pushover_message_raises_on_rejection(monkeypatch: pytest.MonkeyPatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"status": 0, "errors": ["user key is invalid"]})

    _mock_httpx_client(monkeypatch, handler)

    with pytest.raises(DeliveryError, match=r"HTTP 400"):
        send_pushover_message(token="T", user="bad", message="hello")


def test_notify_without_channels_only_logs() -> None:
    notifier = Notifier(_settings())

    with (
        patch("icbcbot.notifier.send_pushover_message") as pushover,
        patch("icbcbot.notifier.send_telegram_message") as telegram,
    ):
        assert notifier.notify("hello") is True
        pushover.assert_not_called()
        telegram.assert_not_called()


def test_notify_sends_to_every_configured_channel() -> None:
    notifier = Notifier(
        _settings(pushover_token="T", pushover_user="U", telegram_bot_token="B", telegram_chat_ids=("1", "2"))
    )
    assert notifier.channels == ["pushover", "telegram"]

    with (
        patch("icbcbot.notifier.send_pushover_message") as pushover,
        patch("icbcbot.notifier.send_telegram_message") as telegram,
    ):
        assert notifier.notify("hello") is True
        pushover.assert_called_once_with(token="T", user="U", message="hello", timeout_seconds=20.0)
        assert [c.kwargs["chat_id"] for c in telegram.call_args_list] == ["1", "2"]


def test_notify_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    notifier = Notifier(_settings(pushover_token="T", pushover_user="U", telegram_bot_token="B", telegram_chat_ids=("1",)))

    with (
        patch("icbcbot.notifier.send_pushover_message", side_effect=DeliveryError("pushover: HTTP 500")) as pushover,
        patch("icbcbot.notifier.send_telegram_message") as telegram,
    ):
        assert notifier.notify("hello") is False
        # Not retried, and the other channel still gets the message.
        assert pushover.call_count == 1
        assert telegram.call_count == 1

    assert "Failed to send pushover message" in caplog.text


def test_pushover_needs_both_token_and_user() -> None:
    notifier = Notifier(_settings(pushover_token="T"))
    assert notifier.channels == []


def test_send_pushover_message_maps_connection_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    _mock_httpx_client(monkeypatch, handler)

    with pytest.raises(DeliveryError, match=r"pushover: request failed"):
        send_pushover_message(token="T", user="U", message="hello")


def test_send_telegram_message_posts_json(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, httpx.Request] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

    _mock_httpx_client(monkeypatch, handler)

    send_telegram_message(bot_token="B", chat_id="-1003", text="hello")

    request = seen["request"]
    assert str(request.url) == f"{TELEGRAM_API_URL}/botB/sendMessage"
    assert json.loads(request.content) == {"chat_id": "-1003", "text": "hello", "disable_web_page_preview": True}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"ok": False, "description": "chat not found"}),
        httpx.Response(403, json={"ok": False, "description": "bot was blocked by the user"}),
        httpx.Response(200, text="<html>gateway</html>"),
    ],
)
def test_send_telegram_message_rejections_are_delivery_errors(
    monkeypatch: pytest.MonkeyPatch, response: httpx.Response
) -> None:
    _mock_httpx_client(monkeypatch, lambda request: response)

    with pytest.raises(DeliveryError, match=r"^telegram: "):
        send_telegram_message(bot_token="B", chat_id="1", text="hello")


def test_notify_keeps_delivering_after_one_telegram_chat_fails(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    delivered: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        chat_id = json.loads(request.content)["chat_id"]
        if chat_id == "1":
            return httpx.Response(400, json={"ok": False, "description": "chat not found"})
        delivered.append(chat_id)
        return httpx.Response(200, json={"ok": True})

    _mock_httpx_client(monkeypatch, handler)
    notifier = Notifier(_settings(telegram_bot_token="B", telegram_chat_ids=("1", "2")))

    assert notifier.notify("hello") is False
    assert delivered == ["2"]
    assert "Failed to send telegram chat_id=1 message" in caplog.text

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import httpx

from icbcbot.domain import DecodeError, NetworkError

logger = logging.getLogger(__name__)

# The portal rejects requests that don't look like they come from its own web UI.
BASE_HEADERS: dict[str, str] = {
    "Sec-Ch-Ua": '" Not;A Brand";v="99", "Google Chrome";v="91", "Chromium";v="91"',
    "Sec-Ch-Ua-Mobile": "?0",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.77 Safari/537.36"
    ),
    "Content-Type": "application/json",
    "Accept": "application/json, text/plain, */*",
}


def build_headers(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    headers = dict(BASE_HEADERS)
    for name, value in (overrides or {}).items():
        headers[name] = value
    return headers


class Transport:
    """Thin JSON-over-HTTP client with a fixed browser header profile."""

    def __init__(self, *, timeout_seconds: float = 20.0, client: httpx.Client | None = None):
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout_seconds)

    def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        header_overrides: Mapping[str, str] | None = None,
    ) -> tuple[Any, httpx.Headers]:
        content = json.dumps(body).encode("utf-8") if body is not None else None

        try:
            r = self._client.request(method, url, content=content, headers=build_headers(header_overrides))
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {url} timed out") from e
        except httpx.DecodingError as e:
            # Body arrived but its content-encoding is corrupt.
            raise DecodeError(f"{method} {url} returned an undecodable body ({e})") from e
        except httpx.RequestError as e:
            raise NetworkError(f"{method} {url} failed ({type(e).__name__}: {e})") from e

        logger.debug("%s %s -> %s", method, url, r.status_code)

        if r.is_error:
            raise NetworkError(f"{method} {url} returned HTTP {r.status_code}", status_code=r.status_code)

        try:
            data = r.json()
        except ValueError as e:
            raise DecodeError(f"{method} {url} returned a non-JSON body") from e

        return data, r.headers

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

from __future__ import annotations

import logging

from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from icbcbot.config import Settings
from icbcbot.domain import (
    NOTIFIED,
    SKIPPED,
    AuthError,
    DecodeError,
    LocationOutcome,
    NetworkError,
    NotFound,
    RunReport,
    SearchCriteria,
    SlotResult,
)
from icbcbot.evaluator import satisfies
from icbcbot.icbc_api import authenticate, query
from icbcbot.notifier import Notifier, format_slot_message
from icbcbot.transport import Transport

logger = logging.getLogger(__name__)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    # No traceback between attempts: type and message only.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    next_attempt = retry_state.attempt_number + 1
    reason = _short_exc(retry_state)

    if sleep_seconds is None:
        logger.info("Retrying query (attempt %s, reason: %s)", next_attempt, reason)
        return

    logger.info("Retrying query in %.0f sec. (attempt %s, reason: %s)", sleep_seconds, next_attempt, reason)


class Orchestrator:
    """One authenticated pass over the configured locations.

    Authentication failure aborts the run with ``AuthError``. Any other
    failure is scoped to the location it happened on: it is logged, the
    location is skipped and the next one is processed.
    """

    def __init__(self, settings: Settings, *, transport: Transport, notifier: Notifier | None = None):
        self.settings = settings
        self.transport = transport
        self.notifier = notifier if notifier is not None else Notifier(settings)
        # Validated up front: a bad end date must abort before logging in.
        self.window = settings.window

    def run(self) -> RunReport:
        token, session_meta = authenticate(self.transport, self.settings.credentials)
        if not token:
            raise AuthError("Login returned an empty token")
        logger.info("Logged in (session fields: %s)", ", ".join(sorted(session_meta)) or "none")

        report = RunReport()
        for location_id in self.settings.location_ids:
            outcome = self._process_location(self.settings.criteria_for(location_id), token)
            report.outcomes.append(outcome)

        logger.info(
            "Run done: locations=%d notified=%d skipped=%d",
            len(report.outcomes),
            len(report.notified),
            len(report.skipped),
        )
        return report

    def _query(self, criteria: SearchCriteria, token: str) -> SlotResult | NotFound:
        decorated = retry(
            retry=retry_if_exception_type(NetworkError),
            stop=stop_after_attempt(self.settings.query_retry_attempts),
            wait=wait_exponential(multiplier=2, min=2, max=4),
            before_sleep=_log_before_sleep,
            reraise=True,
        )(query)

        return decorated(self.transport, criteria, token)

    def _process_location(self, criteria: SearchCriteria, token: str) -> LocationOutcome:
        location_id = criteria.location_id

        try:
            result = self._query(criteria, token)
        except NetworkError as e:
            logger.error("Query failed for location %s (%s: %s)", location_id, type(e).__name__, e)
            return LocationOutcome(location_id, SKIPPED, reason="network_error")
        except DecodeError as e:
            logger.error("Query failed for location %s (%s: %s)", location_id, type(e).__name__, e)
            return LocationOutcome(location_id, SKIPPED, reason="decode_error")

        if isinstance(result, NotFound):
            logger.info("No appointments found for location %s", location_id)
            return LocationOutcome(location_id, SKIPPED, reason="not_found")

        try:
            ok = satisfies(result, self.window)
        except DecodeError as e:
            logger.error("Bad slot for location %s (%s: %s)", location_id, type(e).__name__, e)
            return LocationOutcome(location_id, SKIPPED, reason="decode_error", slot=result)

        if not ok:
            logger.info(
                "No appointments matching the search criteria for location %s (earliest %s)",
                location_id,
                result.date,
            )
            return LocationOutcome(location_id, SKIPPED, reason="outside_window", slot=result)

        message = format_slot_message(result)
        logger.info(message)
        if self.notifier.notify(message):
            logger.info("Notification sent for location %s", location_id)
        return LocationOutcome(location_id, NOTIFIED, slot=result)


def run_check_once(settings: Settings) -> RunReport:
    with Transport(timeout_seconds=settings.request_timeout_seconds) as transport:
        return Orchestrator(settings, transport=transport).run()

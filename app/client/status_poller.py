"""Client-side payment status polling.

The poller only gives the user feedback. The server's reconciler is the
authority on the financial effect and finishes regardless of whether anybody
is still watching, so a timed-out poll is reported differently from a failure.
"""
from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from app.services.gateway_status import GatewayStatus, StatusMapping, normalize_status


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 24


class PollResult(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


MESSAGES = {
    PollResult.SUCCESS: "Payment successful! Your account has been updated.",
    PollResult.FAILED: "Payment failed or was cancelled. You can try again.",
    PollResult.TIMED_OUT: (
        "Payment verification timed out. If you completed the payment, "
        "your balance or subscription will be updated shortly."
    ),
    PollResult.CANCELLED: "Status checks stopped.",
}


@dataclass
class PollOutcome:
    result: PollResult
    attempts: int
    message: str
    last_response: dict | None = None


class StatusPoller:
    """Poll ``GET {prefix}/payments/{reference}/status`` until terminal, exhausted or cancelled.

    ``client`` is an ``httpx.Client`` already pointed at the API (base URL and
    auth headers set). Call ``cancel()`` from any thread, e.g. when the hosting
    screen is dismissed; no request or callback is made after it returns.
    """

    def __init__(
        self,
        client: httpx.Client,
        reference: str,
        *,
        api_prefix: str = "/api/v1",
        interval: float = DEFAULT_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        mapping: StatusMapping | None = None,
        confirm_on_success: bool = False,
        on_update: Callable[[int, GatewayStatus], Any] | None = None,
        on_success: Callable[[dict], Any] | None = None,
    ):
        self.client = client
        self.reference = reference
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.interval = float(interval)
        self.max_attempts = max(1, int(max_attempts))
        self.mapping = mapping
        self.confirm_on_success = confirm_on_success
        self.on_update = on_update
        self.on_success = on_success
        self._cancelled = threading.Event()
        self._callback_lock = threading.RLock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        # Waits out a callback or confirm in progress on another thread; re-entrant
        # so a callback on the poller thread can cancel.
        with self._callback_lock:
            self._cancelled.set()

    def _url(self, suffix: str) -> str:
        return f"{self.api_prefix}/payments/{self.reference}/{suffix}"

    def _fetch_status(self) -> dict | None:
        try:
            response = self.client.get(self._url("status"))
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Status check for %s failed: %s", self.reference, exc)
            return None
        return data if isinstance(data, dict) else None

    def _normalize(self, data: dict | None) -> GatewayStatus:
        if not data:
            return GatewayStatus.UNKNOWN
        normalized = data.get("normalized_status")
        if normalized in GatewayStatus.__members__:
            return GatewayStatus(normalized)
        return normalize_status(data.get("raw_status") or data.get("status"), self.mapping)

    def _confirm(self) -> None:
        try:
            self.client.post(self._url("confirm")).raise_for_status()
        except httpx.HTTPError as exc:
            # The server-side reconciler still applies the effect.
            logger.warning("Confirm for %s failed: %s", self.reference, exc)

    def _notify(self, callback, *args) -> bool:
        with self._callback_lock:
            if self._cancelled.is_set():
                return False
            if callback is not None:
                callback(*args)
            return True

    def _finish(self, result: PollResult, attempts: int, data: dict | None) -> PollOutcome:
        return PollOutcome(result=result, attempts=attempts, message=MESSAGES[result], last_response=data)

    def run(self) -> PollOutcome:
        attempts = 0
        data = None
        while attempts < self.max_attempts:
            if self._cancelled.is_set():
                return self._finish(PollResult.CANCELLED, attempts, data)
            attempts += 1
            data = self._fetch_status()
            status = self._normalize(data)
            if not self._notify(self.on_update, attempts, status):
                return self._finish(PollResult.CANCELLED, attempts, data)

            if status == GatewayStatus.SUCCESS:
                if self.confirm_on_success and not self._notify(self._confirm):
                    return self._finish(PollResult.CANCELLED, attempts, data)
                if not self._notify(self.on_success, data or {}):
                    return self._finish(PollResult.CANCELLED, attempts, data)
                return self._finish(PollResult.SUCCESS, attempts, data)
            if status == GatewayStatus.FAILED:
                return self._finish(PollResult.FAILED, attempts, data)

            if attempts < self.max_attempts and self._cancelled.wait(self.interval):
                return self._finish(PollResult.CANCELLED, attempts, data)

        return self._finish(PollResult.TIMED_OUT, attempts, data)

    def start(self, on_done: Callable[[PollOutcome], Any] | None = None) -> threading.Thread:
        """Run in a daemon thread, as a UI would."""

        def _target():
            outcome = self.run()
            if on_done is not None and outcome.result != PollResult.CANCELLED:
                self._notify(on_done, outcome)

        thread = threading.Thread(target=_target, name=f"status-poller-{self.reference}", daemon=True)
        thread.start()
        return thread

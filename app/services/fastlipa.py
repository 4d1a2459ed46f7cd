import secrets
import time
import logging
from dataclasses import dataclass, field
import httpx
from app.core.config import get_settings


settings = get_settings()
logger = logging.getLogger(__name__)


def _pick(payload: dict, *keys: str):
    """First non-empty value for any of ``keys``, top level first, then under ``data``."""
    if not isinstance(payload, dict):
        return None
    nested = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    for source in (payload, nested):
        for key in keys:
            value = source.get(key)
            # A bare boolean is the API success flag, not a value.
            if value in (None, "") or isinstance(value, bool):
                continue
            return value
    return None


def extract_reference(payload: dict) -> str | None:
    value = _pick(payload, "tranid", "transaction_id")
    return str(value).strip() if value not in (None, "") else None


def extract_raw_status(payload: dict) -> str | None:
    value = _pick(payload, "status", "transaction_status")
    return str(value).strip() if value is not None else None


@dataclass
class ChargeResult:
    reference: str
    raw: dict = field(default_factory=dict)


@dataclass
class StatusResult:
    raw_status: str | None
    payload: dict = field(default_factory=dict)


class FastlipaApiError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, raw: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.raw = raw


class FastlipaClient:
    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        self.base_url = str(base_url or settings.fastlipa_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.fastlipa_api_key
        self.timeout = settings.fastlipa_timeout_seconds
        self.retry_count = settings.fastlipa_retry_count
        self.test_mode = settings.fastlipa_test_mode

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _extract_error_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict):
            for key in ("message", "error", "detail"):
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        text = (response.text or "").strip()
        return text[:300] if text else f"HTTP {response.status_code}"

    def _request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        *,
        params: dict | None = None,
        retry_count_override: int | None = None,
    ) -> dict:
        if not self.api_key:
            raise FastlipaApiError("Fastlipa API not configured. Please contact admin.")
        url = f"{self.base_url}{path}"
        retry_count = self.retry_count if retry_count_override is None else max(0, int(retry_count_override))
        for attempt in range(retry_count + 1):
            start = time.time()
            try:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.request(method, url, json=payload, params=params, headers=self._headers())
                duration_ms = round((time.time() - start) * 1000, 2)
                logger.info("Fastlipa API %s %s status=%s duration=%sms", method, path, response.status_code, duration_ms)
                if response.status_code >= 500 and attempt < retry_count:
                    time.sleep(0.5 * (attempt + 1))
                    continue
                if response.status_code >= 400:
                    raise FastlipaApiError(self._extract_error_message(response), status_code=response.status_code, raw=response.text)
                try:
                    data = response.json()
                except ValueError as exc:
                    raise FastlipaApiError("Fastlipa returned invalid JSON response.", status_code=response.status_code, raw=response.text) from exc
                if not isinstance(data, dict):
                    raise FastlipaApiError("Fastlipa returned an unexpected response shape.", status_code=response.status_code, raw=response.text)
                return data
            except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
                if attempt < retry_count:
                    time.sleep(0.5 * (attempt + 1))
                    continue
                raise FastlipaApiError("Unable to reach payment gateway.", raw=str(exc)) from exc
        raise FastlipaApiError("Payment gateway request failed.")

    def create_charge(self, phone: str, amount: int, name: str) -> ChargeResult:
        if self.test_mode:
            if str(phone).strip().startswith("0000"):
                raise FastlipaApiError("Test mode: simulated invalid phone number.", status_code=400)
            reference = f"FL-TEST-{int(time.time())}-{secrets.token_hex(3)}"
            return ChargeResult(reference=reference, raw={"tranid": reference, "status": "pending"})

        payload = {"number": phone, "amount": int(amount), "name": name or "User"}
        # Never retried: a replayed create could prompt the payer twice.
        data = self._request("POST", "/create-transaction", payload, retry_count_override=0)
        reference = extract_reference(data)
        if not reference:
            raise FastlipaApiError("Fastlipa response did not include a transaction reference.", raw=str(data))
        return ChargeResult(reference=reference, raw=data)

    def get_status(self, reference: str) -> StatusResult:
        if self.test_mode:
            return StatusResult(raw_status="success", payload={"tranid": reference, "status": "success"})
        data = self._request("GET", "/status-transaction", params={"tranid": reference})
        return StatusResult(raw_status=extract_raw_status(data), payload=data)

    def get_balance(self) -> dict:
        if self.test_mode:
            return {"balance": 0, "currency": "TZS", "test_mode": True}
        return self._request("GET", "/balance")

#!/usr/bin/env python3
"""Initiate a real top-up or subscription payment and follow it to a terminal status."""

from __future__ import annotations

import argparse
import os
import sys
import time
from typing import Any

import httpx

from app.client.status_poller import PollResult, StatusPoller


def _step(name: str) -> None:
    print(f"\n==> {name}")


def _request(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    step_name: str,
    expected_status: int = 200,
    retries: int = 0,
    retry_delay_seconds: float = 0.0,
    **kwargs: Any,
) -> httpx.Response:
    for attempt in range(retries + 1):
        try:
            resp = client.request(method, url, **kwargs)
        except (httpx.ConnectTimeout, httpx.ReadTimeout, httpx.ConnectError, httpx.RemoteProtocolError) as exc:
            if attempt >= retries:
                raise RuntimeError(f"{step_name} request failed: {exc}") from exc
            print(f"{step_name}: transient error ({exc}), retrying ({attempt + 1}/{retries})...")
            time.sleep(retry_delay_seconds)
            continue
        if resp.status_code in {502, 503, 504} and attempt < retries:
            print(f"{step_name}: transient HTTP {resp.status_code}, retrying ({attempt + 1}/{retries})...")
            time.sleep(retry_delay_seconds)
            continue
        if resp.status_code != expected_status:
            raise RuntimeError(f"{step_name} failed: expected HTTP {expected_status}, got {resp.status_code}. Body: {resp.text}")
        return resp
    raise RuntimeError(f"{step_name} failed unexpectedly.")


def run_smoke(
    *,
    base_url: str,
    api_prefix: str,
    token: str,
    amount: int | None,
    phone: str | None,
    subscription: bool,
    interval: float,
    max_attempts: int,
    confirm: bool,
    timeout_seconds: float,
    retries: int,
) -> PollResult:
    prefix = "/" + api_prefix.strip("/")
    headers = {"Authorization": f"Bearer {token}"}
    with httpx.Client(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout_seconds) as client:
        _step("Wallet before")
        before = _request(client, "GET", f"{prefix}/wallet/me", step_name="wallet", retries=retries, retry_delay_seconds=2).json()
        print(before)

        if subscription:
            _step("Initiate subscription payment")
            body = {"phone_number": phone} if phone else {}
            resp = _request(client, "POST", f"{prefix}/payments/subscription", step_name="subscription", json=body)
        else:
            _step(f"Initiate top-up of {amount}")
            body = {"amount": amount}
            if phone:
                body["phone_number"] = phone
            resp = _request(client, "POST", f"{prefix}/payments/topup", step_name="topup", json=body)
        initiated = resp.json()
        reference = initiated["reference"]
        print(f"reference={reference} message={initiated.get('message')}")

        _step("Polling status (complete the prompt on the phone)")
        poller = StatusPoller(
            client,
            reference,
            api_prefix=prefix,
            interval=interval,
            max_attempts=max_attempts,
            confirm_on_success=confirm,
            on_update=lambda attempt, status: print(f"  check {attempt}/{max_attempts}: {status.value}"),
        )
        outcome = poller.run()
        print(f"{outcome.result.value}: {outcome.message}")

        _step("Wallet after")
        after = _request(client, "GET", f"{prefix}/wallet/me", step_name="wallet", retries=retries, retry_delay_seconds=2).json()
        print(after)
        return outcome.result


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--base-url", default=os.getenv("SMOKE_BASE_URL", "http://localhost:8000"))
    parser.add_argument("--api-prefix", default="/api/v1")
    parser.add_argument("--token", default=os.getenv("SMOKE_TOKEN"), help="Bearer access token (or SMOKE_TOKEN)")
    parser.add_argument("--amount", type=int, default=500)
    parser.add_argument("--phone", default=None, help="Defaults to the account's profile phone")
    parser.add_argument("--subscription", action="store_true", help="Pay for a subscription instead of a top-up")
    parser.add_argument("--interval", type=float, default=5.0)
    parser.add_argument("--max-attempts", type=int, default=24)
    parser.add_argument("--confirm", action="store_true", help="Ask the server to confirm once success is observed")
    parser.add_argument("--timeout", type=float, default=20.0)
    parser.add_argument("--retries", type=int, default=2)
    args = parser.parse_args()

    if not args.token:
        print("ERROR: --token or SMOKE_TOKEN is required")
        return 2
    try:
        result = run_smoke(
            base_url=args.base_url,
            api_prefix=args.api_prefix,
            token=args.token,
            amount=None if args.subscription else args.amount,
            phone=args.phone,
            subscription=args.subscription,
            interval=args.interval,
            max_attempts=args.max_attempts,
            confirm=args.confirm,
            timeout_seconds=args.timeout,
            retries=args.retries,
        )
    except RuntimeError as exc:
        print(f"ERROR: {exc}")
        return 1
    return 0 if result == PollResult.SUCCESS else 1


if __name__ == "__main__":
    sys.exit(main())

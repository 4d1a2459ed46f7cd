import threading

import httpx

from app.client.status_poller import PollResult, StatusPoller
from app.services.gateway_status import GatewayStatus


def _client(statuses, calls):
    """Serve ``statuses`` from the status endpoint, one per request; the last repeats."""
    queue = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.url.path.endswith("/confirm"):
            return httpx.Response(200, json={"status": "completed", "applied": True})
        value = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(value, int):
            return httpx.Response(value, json={"detail": "error"})
        return httpx.Response(200, json={"reference": "FL-1", "status": "pending", "normalized_status": value})

    return httpx.Client(base_url="http://api.test", transport=httpx.MockTransport(handler))


def test_success_refreshes_and_stops():
    calls = []
    refreshed = []
    updates = []
    with _client(["PENDING", "SUCCESS"], calls) as client:
        poller = StatusPoller(
            client,
            "FL-1",
            interval=0,
            on_update=lambda attempt, status: updates.append((attempt, status)),
            on_success=refreshed.append,
        )
        outcome = poller.run()

    assert outcome.result == PollResult.SUCCESS
    assert outcome.attempts == 2
    assert updates == [(1, GatewayStatus.PENDING), (2, GatewayStatus.SUCCESS)]
    assert len(refreshed) == 1
    assert calls == [("GET", "/api/v1/payments/FL-1/status")] * 2


def test_confirm_on_success_posts_once():
    calls = []
    with _client(["SUCCESS"], calls) as client:
        outcome = StatusPoller(client, "FL-1", interval=0, confirm_on_success=True).run()

    assert outcome.result == PollResult.SUCCESS
    assert calls == [("GET", "/api/v1/payments/FL-1/status"), ("POST", "/api/v1/payments/FL-1/confirm")]


def test_failure_is_reported_without_more_polls():
    calls = []
    with _client(["FAILED", "SUCCESS"], calls) as client:
        outcome = StatusPoller(client, "FL-1", interval=0).run()

    assert outcome.result == PollResult.FAILED
    assert len(calls) == 1
    assert "try again" in outcome.message


def test_budget_exhaustion_is_a_distinct_timeout():
    calls = []
    with _client(["PENDING"], calls) as client:
        outcome = StatusPoller(client, "FL-1", interval=0, max_attempts=24).run()

    assert outcome.result == PollResult.TIMED_OUT
    assert outcome.attempts == 24
    assert len(calls) == 24
    assert "updated shortly" in outcome.message


def test_transport_errors_consume_attempts_without_raising():
    calls = []
    with _client([503, "UNKNOWN", "SUCCESS"], calls) as client:
        outcome = StatusPoller(client, "FL-1", interval=0, max_attempts=5).run()

    assert outcome.result == PollResult.SUCCESS
    assert outcome.attempts == 3


def test_raw_status_fallback_is_normalized():
    def handler(request):
        return httpx.Response(200, json={"raw_status": "cancelled"})

    with httpx.Client(base_url="http://api.test", transport=httpx.MockTransport(handler)) as client:
        outcome = StatusPoller(client, "FL-1", interval=0).run()

    assert outcome.result == PollResult.FAILED


def test_cancel_stops_before_next_request():
    calls = []
    with _client(["PENDING"], calls) as client:
        poller = StatusPoller(client, "FL-1", interval=30)
        thread = poller.start()
        # Wait for the first request, then dismiss the screen mid-sleep.
        for _ in range(200):
            if calls:
                break
            threading.Event().wait(0.01)
        poller.cancel()
        thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(calls) == 1


def test_cancelled_poller_never_calls_back():
    calls = []
    done = []
    successes = []
    with _client(["SUCCESS"], calls) as client:
        poller = StatusPoller(client, "FL-1", interval=0, on_success=successes.append)
        poller.cancel()
        outcome = poller.run()
        poller.start(on_done=done.append).join(timeout=5)

    assert outcome.result == PollResult.CANCELLED
    assert calls == []
    assert successes == []
    assert done == []


def test_success_callback_may_cancel_without_hanging():
    calls = []
    done = []
    with _client(["SUCCESS"], calls) as client:
        poller = StatusPoller(client, "FL-1", interval=0)
        # The screen closes itself from inside the success handler.
        poller.on_success = lambda data: poller.cancel()
        thread = poller.start(on_done=done.append)
        thread.join(timeout=3)

    assert not thread.is_alive()
    assert poller.cancelled
    assert done == []
    assert calls == [("GET", "/api/v1/payments/FL-1/status")]


def test_cancel_during_success_update_skips_confirm():
    calls = []
    successes = []

    with _client(["SUCCESS"], calls) as client:
        poller = StatusPoller(client, "FL-1", interval=0, confirm_on_success=True, on_success=successes.append)

        def _dismiss(attempt, status):
            if status == GatewayStatus.SUCCESS:
                poller.cancel()

        poller.on_update = _dismiss
        outcome = poller.run()

    assert outcome.result == PollResult.CANCELLED
    assert ("POST", "/api/v1/payments/FL-1/confirm") not in calls
    assert successes == []


def test_cancel_waits_for_confirm_in_flight():
    calls = []
    confirm_started = threading.Event()
    release_confirm = threading.Event()

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.url.path.endswith("/confirm"):
            confirm_started.set()
            release_confirm.wait(5)
            return httpx.Response(200, json={"status": "completed", "applied": True})
        return httpx.Response(200, json={"normalized_status": "SUCCESS"})

    with httpx.Client(base_url="http://api.test", transport=httpx.MockTransport(handler)) as client:
        poller = StatusPoller(client, "FL-1", interval=0, confirm_on_success=True)
        thread = poller.start()
        assert confirm_started.wait(5)

        canceller = threading.Thread(target=poller.cancel)
        canceller.start()
        canceller.join(timeout=0.2)
        # cancel() blocks until the confirm in flight has finished.
        assert canceller.is_alive()

        release_confirm.set()
        canceller.join(timeout=5)
        thread.join(timeout=5)

    assert not canceller.is_alive()
    assert not thread.is_alive()
    assert calls.count(("POST", "/api/v1/payments/FL-1/confirm")) == 1

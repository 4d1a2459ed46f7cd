import threading
from datetime import datetime, timedelta, timezone

import pytest

from app.core.database import SessionLocal
from app.models import PaymentEffect, TransactionStatus, Wallet, WalletLedger
from app.services.fastlipa import StatusResult
from app.services.reconciler import ReconcilerPool, ReconcileOutcome, apply_success, reconcile
from app.services.transactions import get_by_reference, insert_transaction, update_status
from app.services.wallet import as_utc, get_or_create_wallet


def _pending(db, user, *, reference="FL-1", amount=1000, effect=PaymentEffect.TOPUP):
    return insert_transaction(db, user_id=user.id, amount=amount, phone="0712345678", reference=reference, effect=effect)


def _balance(db, user_id):
    db.expire_all()
    wallet = db.query(Wallet).filter(Wallet.user_id == user_id).first()
    return wallet.balance if wallet else 0


def _run(reference, gateway, settings, sleep):
    return reconcile(reference, session_factory=SessionLocal, gateway=gateway, settings=settings, sleep=sleep)


def test_apply_success_is_idempotent(db, make_user):
    user = make_user()
    tx = _pending(db, user)

    assert apply_success(db, tx.id) is True
    assert apply_success(db, tx.id) is False

    assert _balance(db, user.id) == 1000
    assert db.query(WalletLedger).count() == 1
    assert get_by_reference(db, "FL-1").status == TransactionStatus.COMPLETED


def test_apply_success_skips_failed_transaction(db, make_user):
    user = make_user()
    tx = _pending(db, user)
    update_status(db, transaction_id=tx.id, new_status=TransactionStatus.FAILED, reason="manual")

    assert apply_success(db, tx.id) is False
    assert _balance(db, user.id) == 0


def test_happy_path_topup(db, make_user, fake_gateway, test_settings, sleeps):
    user = make_user()
    get_or_create_wallet(db, user.id)
    _pending(db, user, amount=1000)
    gateway = fake_gateway(["pending", "success"])

    outcome = _run("FL-1", gateway, test_settings(), sleeps)

    assert outcome == ReconcileOutcome("FL-1", TransactionStatus.COMPLETED, 2, "completed")
    assert gateway.status_calls == ["FL-1", "FL-1"]
    assert sleeps.calls == [5]
    assert _balance(db, user.id) == 1000
    tx = get_by_reference(db, "FL-1")
    assert tx.attempts == 2
    assert tx.raw_status == "success"


def test_explicit_failure_stops_immediately(db, make_user, fake_gateway, test_settings, sleeps):
    user = make_user()
    _pending(db, user)
    gateway = fake_gateway(["cancelled", "success"])

    outcome = _run("FL-1", gateway, test_settings(), sleeps)

    assert outcome.status == TransactionStatus.FAILED
    assert outcome.reason == "gateway_failed"
    assert len(gateway.status_calls) == 1
    assert sleeps.calls == []
    assert _balance(db, user.id) == 0


def test_bounded_polling_marks_timeout(db, make_user, fake_gateway, test_settings, sleeps):
    user = make_user()
    _pending(db, user)
    gateway = fake_gateway(["pending"])

    outcome = _run("FL-1", gateway, test_settings(reconcile_max_attempts=24), sleeps)

    assert len(gateway.status_calls) == 24
    assert len(sleeps.calls) == 23
    assert outcome.status == TransactionStatus.FAILED
    assert outcome.reason == "timeout"
    db.expire_all()
    assert get_by_reference(db, "FL-1").failure_reason == "timeout"
    assert _balance(db, user.id) == 0


def test_unknown_status_keeps_polling(db, make_user, fake_gateway, test_settings, sleeps):
    user = make_user()
    _pending(db, user)
    gateway = fake_gateway(["weird", None, "paid"])

    outcome = _run("FL-1", gateway, test_settings(), sleeps)

    assert outcome.status == TransactionStatus.COMPLETED
    assert len(gateway.status_calls) == 3


def test_transient_gateway_error_uses_one_attempt(db, make_user, fake_gateway, gateway_error, test_settings, sleeps):
    user = make_user()
    _pending(db, user, amount=2500)
    gateway = fake_gateway([gateway_error("Unable to reach payment gateway."), RuntimeError("boom"), "success"])

    outcome = _run("FL-1", gateway, test_settings(reconcile_max_attempts=3), sleeps)

    assert outcome.status == TransactionStatus.COMPLETED
    assert outcome.attempts == 3
    assert _balance(db, user.id) == 2500


def test_transient_errors_until_budget_exhausted(db, make_user, fake_gateway, gateway_error, test_settings, sleeps):
    user = make_user()
    _pending(db, user)
    gateway = fake_gateway([gateway_error("down")])

    outcome = _run("FL-1", gateway, test_settings(reconcile_max_attempts=4), sleeps)

    assert len(gateway.status_calls) == 4
    assert outcome.reason == "timeout"
    assert outcome.status == TransactionStatus.FAILED


def test_stops_when_finalized_by_another_writer(db, make_user, fake_gateway, test_settings):
    user = make_user()
    tx = _pending(db, user)
    gateway = fake_gateway(["pending"])

    def _sleep_and_confirm(_seconds):
        with SessionLocal() as other:
            apply_success(other, tx.id)

    outcome = _run("FL-1", gateway, test_settings(), _sleep_and_confirm)

    assert outcome.reason == "already_final"
    assert outcome.status == TransactionStatus.COMPLETED
    assert len(gateway.status_calls) == 1
    assert _balance(db, user.id) == 1000


def test_success_after_concurrent_confirm_does_not_double_credit(db, make_user, test_settings, sleeps):
    user = make_user()
    tx_id = _pending(db, user).id

    class _RacingGateway:
        """Reports success, but a client confirm lands first."""

        def __init__(self):
            self.status_calls = []

        def get_status(self, reference):
            self.status_calls.append(reference)
            with SessionLocal() as other:
                assert apply_success(other, tx_id) is True
            return StatusResult(raw_status="success", payload={"status": "success"})

    gateway = _RacingGateway()
    outcome = _run("FL-1", gateway, test_settings(), sleeps)

    assert gateway.status_calls == ["FL-1"]
    assert outcome.reason == "already_final"
    assert outcome.status == TransactionStatus.COMPLETED
    assert _balance(db, user.id) == 1000
    assert db.query(WalletLedger).count() == 1


def test_subscription_success_sets_expiry(db, make_user, fake_gateway, test_settings, sleeps):
    user = make_user()
    _pending(db, user, amount=5000, effect=PaymentEffect.SUBSCRIPTION)
    gateway = fake_gateway(["success"])

    before = datetime.now(timezone.utc)
    outcome = _run("FL-1", gateway, test_settings(), sleeps)

    assert outcome.status == TransactionStatus.COMPLETED
    db.expire_all()
    wallet = db.query(Wallet).filter(Wallet.user_id == user.id).one()
    expires_at = as_utc(wallet.subscription_expires_at)
    assert abs(expires_at - (before + timedelta(days=30))) < timedelta(seconds=5)
    assert wallet.balance == 0


def test_subscription_stacks_on_active_period(db, make_user, fake_gateway, test_settings, sleeps):
    user = make_user()
    wallet = get_or_create_wallet(db, user.id)
    current = datetime.now(timezone.utc) + timedelta(days=10)
    wallet.subscription_expires_at = current
    db.commit()
    _pending(db, user, amount=5000, effect=PaymentEffect.SUBSCRIPTION)

    _run("FL-1", fake_gateway(["success"]), test_settings(), sleeps)

    db.expire_all()
    wallet = db.query(Wallet).filter(Wallet.user_id == user.id).one()
    assert abs(as_utc(wallet.subscription_expires_at) - (current + timedelta(days=30))) < timedelta(seconds=1)


def test_unknown_reference(db, fake_gateway, test_settings, sleeps):
    gateway = fake_gateway(["success"])
    outcome = _run("missing", gateway, test_settings(), sleeps)
    assert outcome.status is None
    assert outcome.reason == "not_found"
    assert gateway.status_calls == []


def test_stop_event_leaves_transaction_pending(db, make_user, fake_gateway, test_settings):
    user = make_user()
    _pending(db, user)
    gateway = fake_gateway(["pending"])
    stop = threading.Event()

    def _sleep(_seconds):
        stop.set()

    outcome = reconcile("FL-1", session_factory=SessionLocal, gateway=gateway, settings=test_settings(), sleep=_sleep, stop_event=stop)

    assert outcome.reason == "interrupted"
    assert len(gateway.status_calls) == 1
    db.expire_all()
    assert get_by_reference(db, "FL-1").status == TransactionStatus.PENDING


def test_pool_runs_submitted_references_and_resumes_pending(db, make_user, test_settings):
    user = make_user()
    _pending(db, user, reference="FL-1")
    _pending(db, user, reference="FL-2")
    seen = []
    release = threading.Event()

    def _runner(reference, **kwargs):
        seen.append((reference, kwargs["stop_event"] is not None))
        release.wait(5)
        return ReconcileOutcome(reference, TransactionStatus.COMPLETED, 1, "completed")

    pool = ReconcilerPool(max_workers=2, session_factory=SessionLocal, gateway_factory=object, settings=test_settings(), runner=_runner)
    pool.start()
    try:
        assert pool.resume_pending() == 2
        # Duplicate submission while in flight returns the same run.
        first = pool.submit("FL-1")
        assert pool.submit("FL-1") is first
        release.set()
        assert first.result(timeout=5).reason == "completed"
    finally:
        pool.shutdown(wait=True)

    assert sorted(ref for ref, _ in seen) == ["FL-1", "FL-2"]
    assert all(has_stop for _, has_stop in seen)
    assert not pool.running


def test_pool_rejects_submit_when_stopped(test_settings):
    pool = ReconcilerPool(settings=test_settings(), runner=lambda reference, **kwargs: None)
    with pytest.raises(RuntimeError):
        pool.submit("FL-1")

"""Authoritative payment reconciliation.

A reconciliation run polls the gateway for one transaction reference until it
reaches a terminal status or the attempt budget runs out, and is the only code
path that applies a payment's financial effect. ``apply_success`` is the single
effect entry point; it is safe to call from any number of racing writers.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session
from app.core.config import get_settings
from app.core.database import SessionLocal
from app.models import PaymentEffect, TransactionStatus
from app.services.fastlipa import FastlipaClient
from app.services.gateway_status import GatewayStatus, StatusMapping, normalize_status
from app.services.transactions import (
    get_by_id,
    get_by_reference,
    list_pending,
    record_attempt,
    transition_status,
    update_status,
)
from app.services.wallet import credit_balance, extend_subscription


logger = logging.getLogger(__name__)

REASON_GATEWAY_FAILED = "gateway_failed"
REASON_TIMEOUT = "timeout"


@dataclass
class ReconcileOutcome:
    reference: str
    status: TransactionStatus | None
    attempts: int
    reason: str


def apply_success(
    db: Session,
    transaction_id: int,
    *,
    period: timedelta | None = None,
    now: datetime | None = None,
) -> bool:
    """Mark the transaction completed and apply its effect, exactly once.

    The status flip and the account mutation share one database transaction:
    either both land or neither does. Returns False when the record is missing
    or no longer pending.
    """
    transaction = get_by_id(db, transaction_id)
    if transaction is None:
        return False
    reference = transaction.reference
    user_id = transaction.user_id
    amount = int(transaction.amount)
    effect = transaction.effect
    try:
        if not transition_status(db, transaction_id=transaction_id, new_status=TransactionStatus.COMPLETED):
            db.rollback()
            logger.info("Transaction %s already finalized; success effect not re-applied", reference)
            return False
        if effect == PaymentEffect.SUBSCRIPTION:
            if period is None:
                period = timedelta(days=get_settings().subscription_period_days)
            new_expiry = extend_subscription(
                db,
                user_id,
                period,
                amount=amount,
                reference=reference,
                description=f"{period.days}-day subscription via Fastlipa",
                now=now,
            )
            db.commit()
            logger.info("Subscription for user %s extended to %s (tx %s)", user_id, new_expiry.isoformat(), reference)
        else:
            credit_balance(db, user_id, amount, reference=reference, description="Wallet top-up via Fastlipa")
            db.commit()
            logger.info("Credited %s to user %s (tx %s)", amount, user_id, reference)
    except Exception:
        db.rollback()
        raise
    return True


def _current_status(session_factory, transaction_id: int) -> TransactionStatus | None:
    with session_factory() as db:
        transaction = get_by_id(db, transaction_id)
        return transaction.status if transaction else None


def reconcile(
    reference: str,
    *,
    session_factory=None,
    gateway=None,
    settings=None,
    mapping: StatusMapping | None = None,
    sleep=None,
    stop_event: threading.Event | None = None,
) -> ReconcileOutcome:
    settings = settings or get_settings()
    session_factory = session_factory or SessionLocal
    gateway = gateway or FastlipaClient()
    mapping = mapping or StatusMapping.from_settings(settings)
    max_attempts = max(1, int(settings.reconcile_max_attempts))
    interval = float(settings.reconcile_poll_interval_seconds)
    period = timedelta(days=settings.subscription_period_days)
    if sleep is None:
        sleep = stop_event.wait if stop_event is not None else time.sleep

    with session_factory() as db:
        transaction = get_by_reference(db, reference)
        if transaction is None:
            logger.warning("Reconcile requested for unknown transaction %s", reference)
            return ReconcileOutcome(reference, None, 0, "not_found")
        transaction_id = transaction.id
        if transaction.is_terminal:
            return ReconcileOutcome(reference, transaction.status, 0, "already_final")

    logger.info("Starting reconciliation for %s (max_attempts=%s interval=%ss)", reference, max_attempts, interval)
    attempts = 0
    while attempts < max_attempts:
        if stop_event is not None and stop_event.is_set():
            logger.info("Reconciliation for %s interrupted after %s attempt(s); left pending", reference, attempts)
            return ReconcileOutcome(reference, TransactionStatus.PENDING, attempts, "interrupted")

        attempts += 1
        try:
            current = _current_status(session_factory, transaction_id)
            if current is not None and current != TransactionStatus.PENDING:
                logger.info("Transaction %s finalized elsewhere as %s; stopping", reference, current.value)
                return ReconcileOutcome(reference, current, attempts - 1, "already_final")

            try:
                result = gateway.get_status(reference)
            except Exception as exc:
                logger.warning("Poll %s/%s for %s failed: %s", attempts, max_attempts, reference, exc)
                with session_factory() as db:
                    record_attempt(db, transaction_id)
                status = None
            else:
                status = normalize_status(result.raw_status, mapping)
                logger.info(
                    "Poll %s/%s for %s: raw=%r normalized=%s",
                    attempts,
                    max_attempts,
                    reference,
                    result.raw_status,
                    status.value,
                )
                with session_factory() as db:
                    record_attempt(db, transaction_id, result.raw_status)

            if status == GatewayStatus.SUCCESS:
                with session_factory() as db:
                    applied = apply_success(db, transaction_id, period=period)
                final = _current_status(session_factory, transaction_id)
                return ReconcileOutcome(reference, final, attempts, "completed" if applied else "already_final")

            if status == GatewayStatus.FAILED:
                with session_factory() as db:
                    update_status(
                        db,
                        transaction_id=transaction_id,
                        new_status=TransactionStatus.FAILED,
                        reason=REASON_GATEWAY_FAILED,
                    )
                final = _current_status(session_factory, transaction_id)
                return ReconcileOutcome(reference, final, attempts, REASON_GATEWAY_FAILED)
        except Exception:
            logger.exception("Reconcile attempt %s/%s for %s raised; will retry", attempts, max_attempts, reference)

        if attempts < max_attempts:
            sleep(interval)

    logger.warning("Transaction %s still unresolved after %s attempts; marking failed", reference, max_attempts)
    try:
        with session_factory() as db:
            update_status(db, transaction_id=transaction_id, new_status=TransactionStatus.FAILED, reason=REASON_TIMEOUT)
        final = _current_status(session_factory, transaction_id)
    except Exception:
        logger.exception("Could not record timeout for %s; it stays pending until the next resume sweep", reference)
        final = TransactionStatus.PENDING
    return ReconcileOutcome(reference, final, attempts, REASON_TIMEOUT)


class ReconcilerPool:
    """Supervised background executor for reconciliation runs.

    Runs outlive the request that scheduled them. The database is the durable
    queue: anything still pending when the process stops is picked up again by
    ``resume_pending`` on the next start.
    """

    def __init__(
        self,
        *,
        max_workers: int | None = None,
        session_factory=None,
        gateway_factory=None,
        settings=None,
        runner=None,
    ):
        self._settings = settings or get_settings()
        self._max_workers = max_workers or max(1, int(self._settings.reconcile_max_workers))
        self._session_factory = session_factory or SessionLocal
        self._gateway_factory = gateway_factory or FastlipaClient
        self._runner = runner or reconcile
        self._executor: ThreadPoolExecutor | None = None
        self._stopping = threading.Event()
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future] = {}

    @property
    def running(self) -> bool:
        return self._executor is not None and not self._stopping.is_set()

    def start(self) -> "ReconcilerPool":
        with self._lock:
            if self._executor is None:
                self._stopping.clear()
                self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="reconciler")
                logger.info("Reconciler pool started with %s worker(s)", self._max_workers)
        return self

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor = self._executor
            self._executor = None
        if executor is None:
            return
        self._stopping.set()
        executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("Reconciler pool stopped (%s run(s) were in flight)", len(self._in_flight))

    def in_flight(self) -> list[str]:
        with self._lock:
            return list(self._in_flight)

    def submit(self, reference: str) -> Future | None:
        with self._lock:
            if self._executor is None:
                raise RuntimeError("Reconciler pool is not running")
            existing = self._in_flight.get(reference)
            if existing is not None and not existing.done():
                logger.info("Reconciliation for %s already in flight", reference)
                return existing
            future = self._executor.submit(self._run, reference)
            self._in_flight[reference] = future
        future.add_done_callback(lambda f, ref=reference: self._finished(ref, f))
        return future

    def _run(self, reference: str) -> ReconcileOutcome:
        return self._runner(
            reference,
            session_factory=self._session_factory,
            gateway=self._gateway_factory(),
            settings=self._settings,
            stop_event=self._stopping,
        )

    def _finished(self, reference: str, future: Future) -> None:
        with self._lock:
            if self._in_flight.get(reference) is future:
                self._in_flight.pop(reference, None)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Reconciliation run for %s crashed: %s", reference, exc, exc_info=exc)
            return
        outcome = future.result()
        logger.info(
            "Reconciliation for %s finished: status=%s reason=%s attempts=%s",
            reference,
            outcome.status.value if outcome.status else None,
            outcome.reason,
            outcome.attempts,
        )

    def resume_pending(self) -> int:
        with self._session_factory() as db:
            references = [tx.reference for tx in list_pending(db)]
        for reference in references:
            self.submit(reference)
        if references:
            logger.info("Resumed reconciliation for %s pending transaction(s)", len(references))
        return len(references)

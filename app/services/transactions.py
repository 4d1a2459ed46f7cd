import logging

from sqlalchemy.orm import Session
from app.models import Transaction, TransactionStatus, PaymentEffect, TERMINAL_STATUSES


logger = logging.getLogger(__name__)


def insert_transaction(
    db: Session,
    *,
    user_id: int,
    amount: int,
    phone: str,
    reference: str,
    effect: PaymentEffect,
) -> Transaction:
    transaction = Transaction(
        user_id=user_id,
        reference=reference,
        amount=amount,
        phone_number=phone,
        status=TransactionStatus.PENDING,
        effect=effect,
        attempts=0,
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    return transaction


def get_by_reference(db: Session, reference: str) -> Transaction | None:
    return db.query(Transaction).filter(Transaction.reference == reference).first()


def get_by_id(db: Session, transaction_id: int) -> Transaction | None:
    return db.query(Transaction).filter(Transaction.id == transaction_id).first()


def _pending_filter(db: Session, *, transaction_id: int | None, reference: str | None):
    if transaction_id is None and not reference:
        raise ValueError("transaction_id or reference is required")
    query = db.query(Transaction).filter(Transaction.status == TransactionStatus.PENDING)
    if transaction_id is not None:
        query = query.filter(Transaction.id == transaction_id)
    else:
        query = query.filter(Transaction.reference == reference)
    return query


def transition_status(
    db: Session,
    *,
    transaction_id: int | None = None,
    reference: str | None = None,
    new_status: TransactionStatus,
    reason: str | None = None,
) -> bool:
    """Conditional ``pending -> terminal`` write inside the caller's transaction.

    Returns True only when this call moved the row. Does not commit.
    """
    if new_status not in TERMINAL_STATUSES:
        raise ValueError(f"Cannot transition to non-terminal status {new_status!r}")
    values = {Transaction.status: new_status}
    if reason is not None:
        values[Transaction.failure_reason] = reason[:255]
    moved = _pending_filter(db, transaction_id=transaction_id, reference=reference).update(
        values, synchronize_session=False
    )
    return moved == 1


def update_status(
    db: Session,
    *,
    transaction_id: int | None = None,
    reference: str | None = None,
    new_status: TransactionStatus,
    reason: str | None = None,
) -> bool:
    moved = transition_status(
        db,
        transaction_id=transaction_id,
        reference=reference,
        new_status=new_status,
        reason=reason,
    )
    if moved:
        db.commit()
        logger.info("Transaction %s marked %s (reason=%s)", transaction_id or reference, new_status.value, reason)
    else:
        db.rollback()
        logger.info("Transaction %s not pending; %s write skipped", transaction_id or reference, new_status.value)
    return moved


def record_attempt(db: Session, transaction_id: int, raw_status: str | None = None) -> None:
    values = {Transaction.attempts: Transaction.attempts + 1}
    if raw_status:
        values[Transaction.raw_status] = raw_status[:64]
    _pending_filter(db, transaction_id=transaction_id, reference=None).update(values, synchronize_session=False)
    db.commit()


def list_for_user(db: Session, user_id: int, limit: int = 50) -> list[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )


def list_recent(db: Session, *, status: TransactionStatus | None = None, limit: int = 100) -> list[Transaction]:
    query = db.query(Transaction)
    if status is not None:
        query = query.filter(Transaction.status == status)
    return query.order_by(Transaction.id.desc()).limit(limit).all()


def list_pending(db: Session) -> list[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.status == TransactionStatus.PENDING)
        .order_by(Transaction.id.asc())
        .all()
    )

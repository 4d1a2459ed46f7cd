from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import math

from sqlalchemy import update
from sqlalchemy.orm import Session
from app.models import Wallet, WalletLedger, LedgerType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_or_create_wallet(db: Session, user_id: int) -> Wallet:
    wallet = db.query(Wallet).filter(Wallet.user_id == user_id).first()
    if not wallet:
        wallet = Wallet(user_id=user_id, balance=0)
        db.add(wallet)
        db.commit()
        db.refresh(wallet)
    return wallet


def _wallet_for_update(db: Session, user_id: int) -> Wallet:
    wallet = db.query(Wallet).filter(Wallet.user_id == user_id).with_for_update().first()
    if not wallet:
        wallet = Wallet(user_id=user_id, balance=0)
        db.add(wallet)
        db.flush()
    return wallet


def credit_balance(db: Session, user_id: int, amount: int, *, reference: str, description: str) -> WalletLedger:
    """Atomically add ``amount`` to the user's balance.

    Runs inside the caller's transaction and does not commit. The increment is
    executed by the database so concurrent credits for the same wallet cannot
    overwrite each other.
    """
    if amount <= 0:
        raise ValueError("Credit amount must be positive")
    wallet = _wallet_for_update(db, user_id)
    db.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id)
        .values(balance=Wallet.balance + amount)
        .execution_options(synchronize_session=False)
    )
    entry = WalletLedger(
        wallet_id=wallet.id,
        amount=amount,
        entry_type=LedgerType.CREDIT,
        reference=reference,
        description=description,
    )
    db.add(entry)
    db.flush()
    return entry


def compute_extended_expiry(current: datetime | None, period: timedelta, now: datetime | None = None) -> datetime:
    now = as_utc(now) or utcnow()
    current = as_utc(current)
    start = current if current and current > now else now
    return start + period


def extend_subscription(
    db: Session,
    user_id: int,
    period: timedelta,
    *,
    amount: int,
    reference: str,
    description: str,
    now: datetime | None = None,
) -> datetime:
    """Extend the subscription window from max(now, current expiry). Does not commit."""
    wallet = _wallet_for_update(db, user_id)
    new_expiry = compute_extended_expiry(wallet.subscription_expires_at, period, now)
    wallet.subscription_expires_at = new_expiry
    db.add(
        WalletLedger(
            wallet_id=wallet.id,
            amount=amount,
            entry_type=LedgerType.SUBSCRIPTION,
            reference=reference,
            description=description,
        )
    )
    db.flush()
    return new_expiry


@dataclass
class SubscriptionState:
    active: bool
    expires_at: datetime | None
    days_remaining: int


def subscription_status(wallet: Wallet | None, now: datetime | None = None) -> SubscriptionState:
    now = as_utc(now) or utcnow()
    expires_at = as_utc(wallet.subscription_expires_at) if wallet else None
    if not expires_at or expires_at <= now:
        return SubscriptionState(active=False, expires_at=expires_at, days_remaining=0)
    days = math.ceil((expires_at - now).total_seconds() / 86400)
    return SubscriptionState(active=True, expires_at=expires_at, days_remaining=max(0, days))

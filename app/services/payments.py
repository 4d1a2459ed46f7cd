import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.config import get_settings
from app.models import PaymentEffect, Transaction, TransactionStatus
from app.services.app_settings import get_subscription_price
from app.services.fastlipa import FastlipaApiError
from app.services.gateway_status import GatewayStatus, StatusMapping, normalize_status
from app.services.reconciler import apply_success
from app.services.transactions import get_by_reference, insert_transaction, update_status
from app.utils.phone import normalize_phone


logger = logging.getLogger(__name__)

LOCAL_TO_GATEWAY = {
    TransactionStatus.COMPLETED: GatewayStatus.SUCCESS,
    TransactionStatus.FAILED: GatewayStatus.FAILED,
}


class PaymentError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PaymentValidationError(PaymentError):
    pass


class PaymentInitiationError(PaymentError):
    pass


@dataclass
class InitiatedPayment:
    reference: str
    transaction_id: int
    amount: int
    effect: PaymentEffect
    message: str


@dataclass
class StatusView:
    reference: str
    local_status: TransactionStatus
    normalized_status: GatewayStatus
    raw_status: str | None
    from_gateway: bool


def minimum_amount(db: Session, effect: PaymentEffect, settings=None) -> int:
    settings = settings or get_settings()
    if effect == PaymentEffect.SUBSCRIPTION:
        return get_subscription_price(db)
    return settings.topup_min_amount


def validate_request(db: Session, *, amount, phone: str | None, effect: PaymentEffect, settings=None) -> tuple[int, str]:
    try:
        amount_value = int(amount)
    except (TypeError, ValueError):
        raise PaymentValidationError("Amount must be a whole number")
    if amount_value != amount:
        raise PaymentValidationError("Amount must be a whole number")
    minimum = minimum_amount(db, effect, settings)
    if amount_value < minimum:
        if effect == PaymentEffect.SUBSCRIPTION:
            raise PaymentValidationError(f"Subscription price is Tsh {minimum}")
        raise PaymentValidationError(f"Minimum topup amount is Tsh {minimum}")
    normalized = normalize_phone(phone)
    if not normalized:
        raise PaymentValidationError("Phone number must be 10 digits starting with 0")
    return amount_value, normalized


def initiate_payment(
    db: Session,
    *,
    user_id: int,
    amount,
    phone: str | None,
    name: str | None,
    effect: PaymentEffect,
    gateway,
    scheduler,
    settings=None,
) -> InitiatedPayment:
    amount_value, normalized_phone = validate_request(db, amount=amount, phone=phone, effect=effect, settings=settings)

    try:
        charge = gateway.create_charge(normalized_phone, amount_value, name or "User")
    except FastlipaApiError as exc:
        logger.warning("Charge creation rejected for user %s: %s", user_id, exc.message)
        raise PaymentInitiationError(exc.message or "Failed to initiate payment") from exc

    try:
        transaction = insert_transaction(
            db,
            user_id=user_id,
            amount=amount_value,
            phone=normalized_phone,
            reference=charge.reference,
            effect=effect,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to store transaction %s for user %s: %s", charge.reference, user_id, exc)
        raise PaymentError("Failed to store transaction") from exc

    logger.info(
        "Initiated %s payment %s for user %s amount=%s",
        effect.value,
        transaction.reference,
        user_id,
        amount_value,
    )
    try:
        scheduler.submit(transaction.reference)
    except Exception:
        # The record stays pending; the startup resume sweep or a client confirm will settle it.
        logger.exception("Could not schedule reconciliation for %s", transaction.reference)

    return InitiatedPayment(
        reference=transaction.reference,
        transaction_id=transaction.id,
        amount=amount_value,
        effect=effect,
        message="Payment initiated. Please complete the payment on your phone.",
    )


def check_status(db: Session, transaction: Transaction, *, gateway, mapping: StatusMapping | None = None) -> StatusView:
    """Advisory status for the client. Never writes."""
    if transaction.is_terminal:
        return StatusView(
            reference=transaction.reference,
            local_status=transaction.status,
            normalized_status=LOCAL_TO_GATEWAY[transaction.status],
            raw_status=transaction.raw_status,
            from_gateway=False,
        )
    try:
        result = gateway.get_status(transaction.reference)
    except Exception as exc:
        logger.warning("Status check for %s failed: %s", transaction.reference, exc)
        return StatusView(transaction.reference, transaction.status, GatewayStatus.UNKNOWN, None, True)
    return StatusView(
        reference=transaction.reference,
        local_status=transaction.status,
        normalized_status=normalize_status(result.raw_status, mapping),
        raw_status=result.raw_status,
        from_gateway=True,
    )


def confirm_payment(db: Session, reference: str, *, gateway, settings=None, mapping: StatusMapping | None = None) -> tuple[Transaction | None, bool]:
    """Client-observed confirmation: one gateway check, then the same guarded writes the reconciler uses.

    Returns the refreshed transaction and whether this call applied the effect.
    """
    settings = settings or get_settings()
    transaction = get_by_reference(db, reference)
    if transaction is None:
        return None, False
    if transaction.is_terminal:
        return transaction, False

    view = check_status(db, transaction, gateway=gateway, mapping=mapping or StatusMapping.from_settings(settings))
    applied = False
    if view.normalized_status == GatewayStatus.SUCCESS:
        applied = apply_success(db, transaction.id, period=timedelta(days=settings.subscription_period_days))
    elif view.normalized_status == GatewayStatus.FAILED:
        update_status(db, transaction_id=transaction.id, new_status=TransactionStatus.FAILED, reason="gateway_failed")
    db.expire_all()
    return get_by_reference(db, reference), applied


def mark_failed(db: Session, reference: str, reason: str = "manual") -> bool:
    return update_status(db, reference=reference, new_status=TransactionStatus.FAILED, reason=reason)

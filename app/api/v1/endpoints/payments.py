from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.dependencies import get_current_user, get_gateway, get_reconciler
from app.middlewares.rate_limit import limiter
from app.models import PaymentEffect, Transaction, User
from app.schemas.payments import (
    PaymentConfirmOut,
    PaymentInitiatedOut,
    PaymentStatusOut,
    SubscriptionPaymentRequest,
    TopupRequest,
    TransactionOut,
)
from app.services.app_settings import get_subscription_price
from app.services.payments import (
    InitiatedPayment,
    PaymentError,
    PaymentInitiationError,
    PaymentValidationError,
    check_status,
    confirm_payment,
    initiate_payment,
)
from app.services.transactions import get_by_reference, list_for_user

router = APIRouter()


def _initiate(db: Session, user: User, *, amount, phone: str | None, effect: PaymentEffect, gateway, scheduler) -> InitiatedPayment:
    try:
        return initiate_payment(
            db,
            user_id=user.id,
            amount=amount,
            phone=phone or user.phone,
            name=user.full_name,
            effect=effect,
            gateway=gateway,
            scheduler=scheduler,
        )
    except PaymentValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except PaymentInitiationError as exc:
        raise HTTPException(status_code=502, detail=f"Payment initialization failed: {exc.message}")
    except PaymentError as exc:
        raise HTTPException(status_code=500, detail=exc.message)


def _owned_transaction(db: Session, user: User, reference: str) -> Transaction:
    transaction = get_by_reference(db, reference)
    if not transaction or transaction.user_id != user.id:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.post("/topup", response_model=PaymentInitiatedOut)
@limiter.limit("5/minute")
def create_topup(
    request: Request,
    payload: TopupRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    scheduler=Depends(get_reconciler),
):
    initiated = _initiate(db, user, amount=payload.amount, phone=payload.phone_number, effect=PaymentEffect.TOPUP, gateway=gateway, scheduler=scheduler)
    return PaymentInitiatedOut(
        reference=initiated.reference,
        transaction_id=initiated.transaction_id,
        amount=initiated.amount,
        effect=initiated.effect,
        message=initiated.message,
    )


@router.post("/subscription", response_model=PaymentInitiatedOut)
@limiter.limit("5/minute")
def create_subscription_payment(
    request: Request,
    payload: SubscriptionPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    scheduler=Depends(get_reconciler),
):
    price = get_subscription_price(db)
    initiated = _initiate(db, user, amount=price, phone=payload.phone_number, effect=PaymentEffect.SUBSCRIPTION, gateway=gateway, scheduler=scheduler)
    return PaymentInitiatedOut(
        reference=initiated.reference,
        transaction_id=initiated.transaction_id,
        amount=initiated.amount,
        effect=initiated.effect,
        message=initiated.message,
    )


@router.get("/history", response_model=list[TransactionOut])
def payment_history(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return list_for_user(db, user.id)


@router.get("/{reference}/status", response_model=PaymentStatusOut)
def payment_status(reference: str, user: User = Depends(get_current_user), db: Session = Depends(get_db), gateway=Depends(get_gateway)):
    transaction = _owned_transaction(db, user, reference)
    view = check_status(db, transaction, gateway=gateway)
    return PaymentStatusOut(
        reference=view.reference,
        status=view.local_status,
        normalized_status=view.normalized_status,
        raw_status=view.raw_status,
    )


@router.post("/{reference}/confirm", response_model=PaymentConfirmOut)
def payment_confirm(reference: str, user: User = Depends(get_current_user), db: Session = Depends(get_db), gateway=Depends(get_gateway)):
    _owned_transaction(db, user, reference)
    transaction, applied = confirm_payment(db, reference, gateway=gateway)
    return PaymentConfirmOut(reference=reference, status=transaction.status, applied=applied)

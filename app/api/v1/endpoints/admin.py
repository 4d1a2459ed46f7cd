from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.core.config import get_settings
from app.core.database import get_db
from app.dependencies import get_gateway, require_admin
from app.models import TransactionStatus
from app.schemas.admin import MarkFailedOut, MarkFailedRequest, SubscriptionPriceUpdate
from app.schemas.payments import TransactionOut
from app.schemas.wallet import SubscriptionPriceOut
from app.services.app_settings import set_subscription_price
from app.services.fastlipa import FastlipaApiError
from app.services.payments import mark_failed
from app.services.transactions import get_by_reference, list_recent

router = APIRouter()
settings = get_settings()


def _coerce_status(value: Optional[str]) -> Optional[TransactionStatus]:
    if value is None:
        return None
    raw = value.strip()
    if not raw:
        return None
    for member in TransactionStatus:
        if raw.lower() == member.value.lower() or raw.upper() == member.name:
            return member
    raise HTTPException(status_code=400, detail="Invalid status")


@router.get("/payments", response_model=list[TransactionOut])
def list_payments(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_recent(db, status=_coerce_status(status), limit=limit)


@router.post("/payments/{reference}/fail", response_model=MarkFailedOut)
def fail_payment(reference: str, payload: MarkFailedRequest | None = None, admin=Depends(require_admin), db: Session = Depends(get_db)):
    if not get_by_reference(db, reference):
        raise HTTPException(status_code=404, detail="Transaction not found")
    reason = (payload.reason if payload else None) or "manual"
    updated = mark_failed(db, reference, reason=reason)
    db.expire_all()
    transaction = get_by_reference(db, reference)
    return MarkFailedOut(reference=reference, updated=updated, status=transaction.status.value)


@router.put("/subscription/price", response_model=SubscriptionPriceOut)
def update_subscription_price(payload: SubscriptionPriceUpdate, admin=Depends(require_admin), db: Session = Depends(get_db)):
    try:
        price = set_subscription_price(db, payload.price)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return SubscriptionPriceOut(price=price, period_days=settings.subscription_period_days)


@router.get("/gateway/balance")
def gateway_balance(admin=Depends(require_admin), gateway=Depends(get_gateway)):
    try:
        return gateway.get_balance()
    except FastlipaApiError as exc:
        raise HTTPException(status_code=502, detail=f"Gateway balance unavailable: {exc.message}")

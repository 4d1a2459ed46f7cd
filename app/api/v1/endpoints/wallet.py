from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.core.config import get_settings
from app.core.database import get_db
from app.dependencies import get_current_user
from app.models import User
from app.schemas.wallet import SubscriptionPriceOut, WalletOut
from app.services.app_settings import get_subscription_price
from app.services.wallet import get_or_create_wallet, subscription_status

router = APIRouter()
settings = get_settings()


@router.get("/me", response_model=WalletOut)
def get_wallet(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    wallet = get_or_create_wallet(db, user.id)
    state = subscription_status(wallet)
    return WalletOut(
        balance=int(wallet.balance or 0),
        subscription_expires_at=state.expires_at,
        subscription_active=state.active,
        days_remaining=state.days_remaining,
    )


@router.get("/subscription/price", response_model=SubscriptionPriceOut)
def subscription_price(db: Session = Depends(get_db)):
    return SubscriptionPriceOut(price=get_subscription_price(db), period_days=settings.subscription_period_days)

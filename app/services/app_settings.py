import logging

from sqlalchemy.orm import Session
from app.core.config import get_settings
from app.models import AppSetting, SUBSCRIPTION_PRICE_KEY


settings = get_settings()
logger = logging.getLogger(__name__)


def get_subscription_price(db: Session) -> int:
    row = db.query(AppSetting).filter(AppSetting.key == SUBSCRIPTION_PRICE_KEY).first()
    if not row:
        return settings.subscription_default_price
    try:
        return int(row.value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s value %r; using default %s", SUBSCRIPTION_PRICE_KEY, row.value, settings.subscription_default_price)
        return settings.subscription_default_price


def set_subscription_price(db: Session, price: int) -> int:
    if price < settings.subscription_min_price:
        raise ValueError(f"Subscription price must be at least Tsh {settings.subscription_min_price}")
    row = db.query(AppSetting).filter(AppSetting.key == SUBSCRIPTION_PRICE_KEY).first()
    if row:
        row.value = str(int(price))
    else:
        db.add(AppSetting(key=SUBSCRIPTION_PRICE_KEY, value=str(int(price))))
    db.commit()
    logger.info("Subscription price set to %s", price)
    return int(price)

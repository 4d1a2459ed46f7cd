from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class WalletOut(BaseModel):
    balance: int
    subscription_expires_at: Optional[datetime] = None
    subscription_active: bool = False
    days_remaining: int = 0


class SubscriptionPriceOut(BaseModel):
    price: int
    period_days: int

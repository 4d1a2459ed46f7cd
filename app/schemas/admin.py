from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionPriceUpdate(BaseModel):
    price: int = Field(..., gt=0)


class MarkFailedRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class MarkFailedOut(BaseModel):
    reference: str
    updated: bool
    status: str

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from app.models.transaction import TransactionStatus, PaymentEffect
from app.services.gateway_status import GatewayStatus


class TopupRequest(BaseModel):
    amount: int = Field(..., gt=0)
    phone_number: Optional[str] = None


class SubscriptionPaymentRequest(BaseModel):
    phone_number: Optional[str] = None


class PaymentInitiatedOut(BaseModel):
    success: bool = True
    reference: str
    transaction_id: int
    amount: int
    effect: PaymentEffect
    status: TransactionStatus = TransactionStatus.PENDING
    message: str


class PaymentStatusOut(BaseModel):
    reference: str
    status: TransactionStatus
    normalized_status: GatewayStatus
    raw_status: Optional[str] = None


class PaymentConfirmOut(BaseModel):
    reference: str
    status: TransactionStatus
    applied: bool


class TransactionOut(BaseModel):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    reference: str
    amount: int
    phone_number: str
    status: TransactionStatus
    effect: PaymentEffect
    attempts: int = 0
    failure_reason: Optional[str] = None

    class Config:
        from_attributes = True

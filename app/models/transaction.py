import enum
from sqlalchemy import Column, Integer, String, ForeignKey, Enum, Index, CheckConstraint
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.base import TimestampMixin, enum_values


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED})


class PaymentEffect(str, enum.Enum):
    TOPUP = "topup"
    SUBSCRIPTION = "subscription"


class Transaction(Base, TimestampMixin):
    __tablename__ = "payment_transactions"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payment_transactions_amount_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reference = Column(String(64), unique=True, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    phone_number = Column(String(20), nullable=False)
    status = Column(Enum(TransactionStatus, name="transactionstatus", values_callable=enum_values), nullable=False, default=TransactionStatus.PENDING)
    effect = Column(Enum(PaymentEffect, name="paymenteffect", values_callable=enum_values), nullable=False, default=PaymentEffect.TOPUP)
    raw_status = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    failure_reason = Column(String(255), nullable=True)

    user = relationship("User", back_populates="transactions")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


Index("ix_payment_transactions_user_status", Transaction.user_id, Transaction.status)
Index("ix_payment_transactions_effect_status", Transaction.effect, Transaction.status)

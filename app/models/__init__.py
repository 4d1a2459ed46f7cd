from app.models.user import User, UserRole
from app.models.wallet import Wallet
from app.models.wallet_ledger import WalletLedger, LedgerType
from app.models.transaction import Transaction, TransactionStatus, PaymentEffect, TERMINAL_STATUSES
from app.models.app_setting import AppSetting, SUBSCRIPTION_PRICE_KEY

__all__ = [
    "User",
    "UserRole",
    "Wallet",
    "WalletLedger",
    "LedgerType",
    "Transaction",
    "TransactionStatus",
    "PaymentEffect",
    "TERMINAL_STATUSES",
    "AppSetting",
    "SUBSCRIPTION_PRICE_KEY",
]

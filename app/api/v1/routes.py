from fastapi import APIRouter
from app.api.v1.endpoints import payments, wallet, admin

router = APIRouter()

router.include_router(payments.router, prefix="/payments", tags=["payments"])
router.include_router(wallet.router, prefix="/wallet", tags=["wallet"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])

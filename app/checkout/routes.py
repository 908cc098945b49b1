from fastapi import APIRouter
from app.checkout.klarna.routes import router as klarna_router
from app.checkout.paytrail.routes import router as paytrail_router

router = APIRouter()

# Klarna Network (tokens, presentation, payment request, authorize)
router.include_router(klarna_router, prefix="")
# Paytrail (signed payments and provider lists)
router.include_router(paytrail_router, prefix="")

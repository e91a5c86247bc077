from fastapi import APIRouter

from . import ads, analysis, payment, user

router = APIRouter(prefix="/v1")
router.include_router(analysis.router)
router.include_router(ads.router)
# payment router also receives store webhooks
router.include_router(payment.router)
router.include_router(user.router)

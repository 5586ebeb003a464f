from fastapi import APIRouter

from entro.api.routes import events, orders, organizations, platform, scanning

router = APIRouter()

router.include_router(platform.router)
router.include_router(organizations.router)
router.include_router(events.router)
router.include_router(orders.router)
router.include_router(scanning.router)

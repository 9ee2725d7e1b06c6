"""
API Routes
"""
from fastapi import APIRouter

from hookrelay.api.routes.events import router as events_router
from hookrelay.api.routes.deliveries import router as deliveries_router

router = APIRouter()

router.include_router(events_router, prefix="/events", tags=["events"])
router.include_router(deliveries_router, prefix="/deliveries", tags=["deliveries"])

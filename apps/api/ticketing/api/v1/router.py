from fastapi import APIRouter

from ticketing.api.v1.events import router as events_router
from ticketing.api.v1.me import router as me_router
from ticketing.api.v1.payments import router as payments_router
from ticketing.api.v1.tickets import router as tickets_router

router = APIRouter()
router.include_router(events_router)
router.include_router(me_router)
router.include_router(payments_router)
router.include_router(tickets_router)

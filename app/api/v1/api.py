from fastapi import APIRouter
from app.api.v1.routes.auth import router as auth_router
from app.api.v1.routes.events import router as events_router
from app.api.v1.routes.bookings import router as bookings_router
from app.api.v1.routes.receipts import router as receipts_router
from app.api.v1.routes.tickets import router as tickets_router
from app.api.v1.routes.notifications import router as notifications_router
from app.api.v1.routes.realtime import router as realtime_router
from app.api.v1.routes.admin import router as admin_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(events_router)
api_router.include_router(bookings_router)
api_router.include_router(receipts_router)
api_router.include_router(tickets_router)
api_router.include_router(notifications_router)
api_router.include_router(realtime_router)
api_router.include_router(admin_router)

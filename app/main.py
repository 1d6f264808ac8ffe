import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import TicketingError
from app.core.logging import configure_logging
from app.api.v1.api import api_router
from app.db.session import SessionLocal
from app.realtime.registry import SessionRegistry
from app.services.notification_service import NotificationDispatcher

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = [
    "http://127.0.0.1:5173", "http://localhost:5173",
    "http://127.0.0.1:8080", "http://localhost:8080",
]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One registry per process; the dispatcher gets it explicitly.
app.state.session_factory = SessionLocal
app.state.session_registry = SessionRegistry()
app.state.notification_dispatcher = NotificationDispatcher(SessionLocal, app.state.session_registry)


@app.exception_handler(TicketingError)
async def ticketing_error_handler(request: Request, exc: TicketingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}

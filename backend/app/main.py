"""
FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.api.v1.api import api_router
from app.core.logger import logger
from app.db.database import SessionLocal, init_db
from app.middleware.correlation import CorrelationMiddleware
from app.services import background_jobs
from app.services.case_store import case_store
from app.services.notification_service import OutboxNotificationTrigger
from app.services.transition_scheduler import TransitionScheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("QuickVerdicts API starting")
    if settings.DB_AUTO_CREATE:
        init_db()

    notifier = OutboxNotificationTrigger(SessionLocal)
    app.state.trial_scheduler = None
    if settings.TRIAL_SCHEDULER_ENABLED:
        app.state.trial_scheduler = TransitionScheduler.from_settings(
            settings, case_store, notifier, SessionLocal
        )
        app.state.trial_scheduler.start()
    else:
        logger.info("Trial scheduler disabled (TRIAL_SCHEDULER_ENABLED=false)")

    app.state.maintenance_scheduler = background_jobs.start_scheduler(notifier)

    yield

    logger.info("QuickVerdicts API shutdown")
    if app.state.trial_scheduler is not None:
        app.state.trial_scheduler.stop()
    background_jobs.shutdown_scheduler()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api_router, prefix="/api/v1")

# ── Correlation ID middleware (must be added before CORS) ─────────────────────
app.add_middleware(CorrelationMiddleware)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)


@app.get("/")
def read_root():
    logger.info("Root endpoint accessed")
    return {"message": "QuickVerdicts API is running", "version": "1.0.0", "docs": "/docs"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}

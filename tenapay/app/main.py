"""
FastAPI Application Entry Point.

This is the main application file for the TenaPay Health Wallet Backend.
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from tenapay.app.core.config import settings
from tenapay.app.api.v1.router import router as api_v1_router
from tenapay.app.db.session import engine, Base, AsyncSessionLocal
from tenapay.app.core.observability import ObservabilityMiddleware, configure_logging
from tenapay.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from tenapay.app.jobs.report_job import schedule_jobs

# Import models to ensure they are registered with Base
from tenapay.app.models.user import User  # noqa: F401
from tenapay.app.models.transaction import Transaction  # noqa: F401
from tenapay.app.models.notification import Notification  # noqa: F401
from tenapay.app.models.audit_log import AuditLog  # noqa: F401
from tenapay.app.models.reconciliation_item import ReconciliationItem  # noqa: F401

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    1. Configures logging and creates database tables.
    2. Starts the job scheduler when enabled; stops it on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = AsyncIOScheduler(timezone="UTC")
        schedule_jobs(scheduler, AsyncSessionLocal)
        scheduler.start()

    logger.info("%s started", settings.app_name)
    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Health micro-insurance wallet: premium top-ups and claim payouts",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


app.include_router(api_v1_router, prefix=f"/{settings.api_version}")

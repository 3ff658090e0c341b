# app/main.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Config and core
from app.core.config import settings as config
from app.core.logging_config import setup_logging
from app.core.redis import redis_client
from app.clients.resend import resend_client

# FastAPI routers
from app.routers.v1.api import api_router as v1_api_router
from app.routers.cron import cron_router

# --- Init ---
logger = logging.getLogger(__name__)

# --- Critical error handler ---
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Global handler for every unhandled exception.
    Logs it with the request and returns a generic 500.
    """
    logger.critical(f"Unhandled exception for request: {request.method} {request.url}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error."},
    )

# --- Lifespan (startup and shutdown) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application lifespan startup...")
    if not resend_client.is_configured:
        logger.warning("RESEND_API_KEY is not set; emails will not be sent.")
    if not config.CRON_SECRET:
        logger.warning("CRON_SECRET is not set; scheduled job endpoints will refuse every call.")

    yield

    logger.info("Application shutting down...")
    await resend_client.async_client.aclose()
    await redis_client.aclose()

# --- FastAPI app ---
app = FastAPI(
    title="Ticketing Fulfillment Service",
    description="Order fulfillment, rep attribution and lifecycle email automation for event ticketing",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.SITE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers ---
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(v1_api_router, prefix="/api")

# Scheduled jobs (outside the public API)
app.include_router(cron_router, prefix="/internal/cron", tags=["Cron"])

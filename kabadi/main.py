"""
Kabadi Man — Order Tracking API
Live pickup status for customers: lifecycle steps, partner contact, OTP.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kabadi import __version__
from kabadi.config import settings
from kabadi.routers import tracking, webhooks
from kabadi.services.order_stream import close_redis
from kabadi.services.sessions import close_sessions

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("🚀 Kabadi tracking API starting...")
    yield
    # Live subscriptions must be released before the redis pool goes away
    await close_sessions()
    await close_redis()
    logger.info("🛑 Kabadi tracking API shut down.")


app = FastAPI(
    title="Kabadi Man Tracking API",
    description="Live status tracking for scrap pickup orders",
    version=__version__,
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ────────────────────────────────────────────────
app.include_router(tracking.router, prefix="/api/tracking", tags=["Tracking"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Change Feed"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "Kabadi tracking API"}

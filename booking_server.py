"""
Booking backend HTTP server
Run: gunicorn -c gunicorn_conf.py booking_server:app
"""

import logging
import os
import sys
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# .env must be loaded before Config reads the environment
load_dotenv()

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from config import Config  # noqa: E402
from database import IS_SQLITE, create_tables  # noqa: E402
from routes.account import router as account_router  # noqa: E402
from routes.booking import router as booking_router  # noqa: E402
from routes.disputes import router as disputes_router  # noqa: E402
from routes.wallet import router as wallet_router  # noqa: E402
from utils.error_handler import register_exception_handlers  # noqa: E402

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logging.getLogger('apscheduler').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Clients built against the hosted functions gateway still call /functions/v1/<name>
LEGACY_PREFIX = "/functions/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables for local databases and run the job scheduler for this worker"""
    logger.info(f"🔧 Worker {os.getpid()} starting...")
    Config.log_environment_config()

    if IS_SQLITE or not Config.IS_PRODUCTION:
        create_tables()

    scheduler = None
    if not Config.DISABLE_SCHEDULER:
        from jobs.scheduler import BookingScheduler

        scheduler = BookingScheduler()
        scheduler.start()
    else:
        logger.info("⏸️ Background scheduler disabled (DISABLE_SCHEDULER=true)")

    yield

    if scheduler is not None:
        scheduler.stop()
    logger.info(f"🔄 Worker {os.getpid()} shutting down...")


app = FastAPI(
    title="Booking Backend",
    description="Escrow, booking lifecycle, settlement and disputes",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.ALLOWED_ORIGINS,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "idempotency-key"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
)


@app.middleware("http")
async def strip_legacy_prefix(request: Request, call_next):
    if request.scope["path"].startswith(LEGACY_PREFIX + "/"):
        request.scope["path"] = request.scope["path"][len(LEGACY_PREFIX):]
    return await call_next(request)


register_exception_handlers(app)

app.include_router(booking_router)
app.include_router(disputes_router)
app.include_router(account_router)
app.include_router(wallet_router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "booking-backend"}

# driveflow/main.py
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request, status as fastapi_status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from driveflow.api.v1.api import api_router_v1
from driveflow.api.v1.endpoints import live
from driveflow.core.config import (
    OTP_CLEANUP_INTERVAL_MINUTES,
    SCHEDULER_TIMEZONE,
    UPLOAD_DIR,
    UPLOAD_URL_PREFIX,
    setup_logging,
)
from driveflow.core.exceptions import DriveFlowError
from driveflow.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from driveflow.db.database import close_db, init_db, ping_db
from driveflow.middleware.authentication import AuthMiddleware
from driveflow.middleware.logging import RequestLoggingMiddleware
from driveflow.scheduler.jobs import expire_stale_delivery_otps

# --- Scheduler Instance ---
scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application startup...")
    await init_db()
    logger.info("Database initialized.")

    scheduler.add_job(
        expire_stale_delivery_otps,
        trigger=IntervalTrigger(minutes=OTP_CLEANUP_INTERVAL_MINUTES),
        id="expire_delivery_otps_job",
        name="Expire Stale Delivery Codes",
        replace_existing=True,
        misfire_grace_time=60 * OTP_CLEANUP_INTERVAL_MINUTES,
    )
    scheduler.start()
    logger.info(f"Scheduler started with timezone: {scheduler.timezone}")
    yield
    logger.info("Application shutdown...")
    if scheduler.running:
        scheduler.shutdown()
    close_db()


app = FastAPI(
    title="DriveFlow API",
    description="Vehicle service marketplace: bookings, workshop workflow, approvals and billing.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error handling ---
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)


@app.exception_handler(DriveFlowError)
async def driveflow_exception_handler(request: Request, exc: DriveFlowError):
    logger.warning(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    content = {"detail": exc.message, "code": exc.error_code}
    if exc.details:
        content["details"] = jsonable_encoder(exc.details)
    if exc.retryable:
        content["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    logger.error(f"Validation Error: {exc.errors()}")
    # ctx bisa berisi objek exception yang tidak bisa di-serialize
    errors = [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "code": "validation_failed", "errors": jsonable_encoder(errors)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled Exception: {exc}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An internal server error occurred."},
    )


# --- Middleware --- (yang terakhir ditambahkan jalan paling luar)
app.add_middleware(AuthMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.state.limiter = get_rate_limiter()
app.add_middleware(GZipMiddleware, minimum_size=500)


# --- Routes ---
app.include_router(api_router_v1)
app.include_router(live.router)

UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")


@app.get("/")
async def read_root():
    return {"message": "Welcome to DriveFlow!"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    try:
        await ping_db()
    except PyMongoError as e:
        logger.error(f"MongoDB ping failed: {e}")
        return JSONResponse(
            status_code=fastapi_status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "error", "detail": "MongoDB connection failed.", "retryable": True},
        )
    return {"status": "ok", "message": "MongoDB connection is healthy."}

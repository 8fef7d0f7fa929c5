# qrattend/backend/main.py
import logging
import traceback
from contextlib import asynccontextmanager

import asyncpg
import redis.asyncio as redis
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Rate limiting
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import auth, admin, student
from .db.db_client import AsyncPostgresClient
from .tasks.cron import SessionStatusSweeper
from .api.utilities.limiter import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Opens the connection pools and starts the status sweep on start-up;
    releases them on shutdown.
    """
    setup_logging()
    logger.info("Application starting...")

    postgres_pool = None
    redis_pool = None
    sweeper = None

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=5, max_size=20
        )
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )

        app.state.postgres_pool = postgres_pool
        app.state.redis_pool = redis_pool
        logger.info("PostgreSQL and Redis connection pools created.")

        db_client = AsyncPostgresClient(pool=postgres_pool)
        await db_client.init_schema()

        sweeper = SessionStatusSweeper(db_client, interval_seconds=settings.STATUS_SWEEP_INTERVAL_SECONDS)
        sweeper.start()
        app.state.sweeper = sweeper

    except Exception as e:
        logger.error(f"Start-up failed: {e}", exc_info=True)
        if sweeper:
            sweeper.shutdown()
        if postgres_pool:
            await postgres_pool.close()
        if redis_pool:
            await redis_pool.disconnect()
        raise

    yield

    logger.info("Application shutting down...")
    sweeper.shutdown()
    await postgres_pool.close()
    logger.info("PostgreSQL connection pool closed.")
    await redis_pool.disconnect()
    logger.info("Redis connection pool closed.")


app = FastAPI(
    title="QR Attendance API",
    description="QR-code based class attendance with geofenced scans.",
    version="1.0.0",
    lifespan=lifespan
)
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing fields are a plain 400."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": message, "errors": jsonable_encoder(errors)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    content = {"detail": "Internal server error"}
    if settings.expose_error_details:
        content["error"] = str(exc)
        content["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


app.include_router(auth.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
app.include_router(student.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check():
    """Liveness probe."""
    return {"status": "ok", "message": "QR Attendance API is running."}

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_google_calendar,  # noqa: F401
    models_webhook,  # noqa: F401
)
from .config import ALLOWED_ORIGINS, WEBHOOK_DELIVERY_MODE
from .database import Base, engine
from .domain.availability.router import router as availability_router
from .domain.bookings.router import router as bookings_router
from .domain.event_types.router import router as event_types_router
from .domain.scheduling.router import router as scheduling_router
from .domain.webhooks.dispatcher import ArqDeliveryScheduler, InlineDeliveryScheduler
from .domain.webhooks.router import router as webhooks_router
from .errors import BookingEngineError, InvalidInputError
from .kv_store import create_kv_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_delivery_scheduler(mode: str = WEBHOOK_DELIVERY_MODE):
    if mode == "inline":
        logger.warning("⚠️ Webhook retries run in-process and are lost on restart (WEBHOOK_DELIVERY_MODE=inline)")
        return InlineDeliveryScheduler()
    return ArqDeliveryScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    app.state.kv_store = create_kv_store()
    app.state.delivery_scheduler = create_delivery_scheduler()

    yield

    logger.info("Application shutting down...")
    scheduler = app.state.delivery_scheduler
    if isinstance(scheduler, ArqDeliveryScheduler):
        await scheduler.close()


HTTP_ERROR_KINDS = {
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    429: "RateLimited",
    503: "UpstreamUnavailable",
}


def http_error_body(exc: StarletteHTTPException) -> dict:
    """{"kind", "message"} for a framework HTTPException; dict details keep their extra fields"""
    kind = HTTP_ERROR_KINDS.get(exc.status_code, "InvalidInput" if exc.status_code < 500 else "Internal")
    if isinstance(exc.detail, dict):
        details = {k: v for k, v in exc.detail.items() if k != "message"}
        message = exc.detail.get("message", "")
        return {"kind": kind, "message": message, **({"details": details} if details else {})}
    return {"kind": kind, "message": str(exc.detail)}


def register_exception_handlers(app: FastAPI) -> None:
    """Every error leaves the API as {"error": {"kind", "message"}}"""

    @app.exception_handler(BookingEngineError)
    async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
        if exc.status_code >= 500:
            logger.error(f"❌ {exc.kind} on {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        error = http_error_body(exc)
        logger.info(f"{error['kind']} on {request.method} {request.url.path}: {error['message']}")
        return JSONResponse(status_code=exc.status_code, content={"error": error}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": [str(part) for part in error.get("loc", ())], "message": error.get("msg", "")}
            for error in exc.errors()
        ]
        logger.warning(f"Validation error for {request.url.path}: {details}")
        error = InvalidInputError(details[0]["message"] if details else None).to_dict()
        return JSONResponse(status_code=422, content={"error": {**error, "details": details}})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={"error": BookingEngineError().to_dict()},
        )


app = FastAPI(title="Slotbook API", version="1.0.0", lifespan=lifespan)
register_exception_handlers(app)

# Log CORS configuration for debugging
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Routes
app.include_router(event_types_router)
app.include_router(scheduling_router)
app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(webhooks_router)


@app.get("/")
def root():
    return {"message": "Slotbook API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}

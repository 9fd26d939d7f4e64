"""
Order Lifecycle Engine

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from orderflow.api.deps import build_deadline_reminders, get_gateway
from orderflow.api.middleware.request_id import RequestIdMiddleware
from orderflow.api.v1 import router as api_v1_router
from orderflow.config import get_settings
from orderflow.database import async_session_maker, close_db, init_db
from orderflow.engines.notifications.reminders import DeadlineReminderScheduler
from orderflow.errors import OrderFlowError
from orderflow.logging_config import configure_logging, get_logger
from orderflow.realtime.broker import get_broker
from orderflow.schemas.common import ErrorResponse, HealthResponse

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Runs startup and shutdown tasks.
    """
    # Configure logging first
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    # Startup
    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    scheduler = None
    if settings.deadline_reminders_enabled:
        scheduler = DeadlineReminderScheduler(
            build_deadline_reminders(get_gateway(), get_broker()),
            interval_seconds=settings.deadline_reminder_interval_seconds,
        )
        await scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down...")
    if scheduler is not None:
        await scheduler.stop()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.project_name,
    description="""
    Order Lifecycle Engine

    Multi-party (client / writer / admin) workflow for document-production orders.

    ## Features

    - **Orders**: query, quotation, payment, assignment, QC, delivery
    - **Submissions**: versioned files, QC review, numbered revision requests
    - **Notifications**: durable inbox with real-time push
    - **Live sessions**: WebSocket subscriptions per order context

    ## Invariants

    1. One authoritative status per order, changed only through the transition table
    2. At most one submission per order awaiting QC or approved
    3. Audit and notifications run after commit and never undo a transition
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# add_middleware stacks innermost-first, so the last added is outermost
_cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",  # Vite default
    "http://127.0.0.1:3000",
]

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_headers(request: Request) -> dict:
    req_id = getattr(request.state, "request_id", None)
    return {"X-Request-ID": req_id} if req_id else {}


@app.exception_handler(OrderFlowError)
async def orderflow_exception_handler(request: Request, exc: OrderFlowError):
    """Map the engine's failure taxonomy onto HTTP statuses."""
    req_id = getattr(request.state, "request_id", None)
    if exc.status_code >= 500:
        logger.error("Request failed: %s", exc, extra={"path": request.url.path})
    else:
        logger.info(
            "Request rejected: %s",
            exc,
            extra={"path": request.url.path, "code": exc.code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.message, code=exc.code, request_id=req_id).model_dump(),
        headers=_error_headers(request),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    headers = dict(exc.headers or {})
    headers.update(_error_headers(request))
    content = {"detail": exc.detail}
    req_id = getattr(request.state, "request_id", None)
    if req_id and exc.status_code >= 500:
        content["request_id"] = req_id
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    content = {
        "detail": "Validation error",
        "code": "VALIDATION",
        "errors": errors,
        "request_id": getattr(request.state, "request_id", None),
    }
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=content,
        headers=_error_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception,
):
    """Handle unexpected exceptions; the cause stays in the logs."""
    logger.exception("Unhandled exception: %s", exc)
    req_id = getattr(request.state, "request_id", None)
    if settings.debug:
        content = {
            "detail": str(exc),
            "code": "INTERNAL",
            "type": type(exc).__name__,
            "request_id": req_id,
        }
    else:
        content = {"detail": "Internal error, please retry", "code": "INTERNAL", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
        headers=_error_headers(request),
    )


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application and database health."""
    database = "connected"
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        version=settings.version,
        database=database,
        live_sessions=get_broker().session_count,
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.project_name,
        "version": settings.version,
        "docs": "/docs" if settings.debug else "disabled",
        "api": {
            "v1": settings.api_v1_prefix,
            "live": f"{settings.api_v1_prefix}/ws",
        },
    }


# Mount API v1 routes
app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


# Main entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )

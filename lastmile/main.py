from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from lastmile.config import settings
from lastmile.api.v1.router import api_router
from lastmile.core.exceptions import EngineError, ValidationFailedError
from lastmile.database import init_db, async_session_factory
from lastmile.jobs.scheduler import start_scheduler, shutdown_scheduler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def auto_seed_admin():
    """
    Create the first administrator when the users table is empty.

    Needs FIRST_ADMIN_EMAIL and FIRST_ADMIN_PASSWORD; does nothing otherwise.
    """
    if not (settings.FIRST_ADMIN_EMAIL and settings.FIRST_ADMIN_PASSWORD):
        return

    from sqlalchemy import select, func
    from lastmile.models.user import User, UserRoleName
    from lastmile.services.user_service import UserService

    async with async_session_factory() as session:
        user_count = (await session.execute(select(func.count(User.id)))).scalar()
        if user_count:
            return

        admin = await UserService(session).create_user({
            "name": settings.FIRST_ADMIN_NAME,
            "email": settings.FIRST_ADMIN_EMAIL,
            "password": settings.FIRST_ADMIN_PASSWORD,
            "roles": [UserRoleName.ADMIN.value],
        })
        await session.commit()
        logger.info(f"Seeded administrator {admin.email}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables
    - Seed the first administrator
    - Start background scheduler
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    await auto_seed_admin()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Authentication", "description": "JWT-based authentication"},
    {"name": "Users", "description": "Users, client pricing and courier settings"},
    {"name": "Shipments", "description": "Shipment lifecycle, assignment, delivery verification and public tracking"},
    {"name": "Ledgers", "description": "Courier earnings, client wallets, payouts and financial reports"},
    {"name": "Partner Tiers", "description": "Volume-based client tiers and discounts"},
    {"name": "Notifications", "description": "Notification log and in-app notices"},
    {"name": "Jobs", "description": "Background job status and manual runs"},
]

API_DESCRIPTION = """
## Last-Mile Delivery Engine

Shipment lifecycle and financial ledger for a last-mile delivery business.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - Validation failed, delivery code expired or mismatched |
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Insufficient permissions |
| 404 | Not Found - Resource doesn't exist |
| 409 | Conflict - Duplicate email or payout not pending |
| 422 | Unprocessable Entity - Invalid status or revert |
| 500 | Internal Server Error |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    """Structured body for engine errors; the transaction has already rolled back."""
    logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    content = exc.to_dict()
    content.update({"path": str(request.url.path), "method": request.method})
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies use the same shape as engine validation errors."""
    return JSONResponse(
        status_code=ValidationFailedError.status_code,
        content={
            "error": "Validation failed",
            "code": ValidationFailedError.code,
            "details": {"errors": jsonable_encoder(exc.errors(), custom_encoder={Exception: str})},
            "path": str(request.url.path),
            "method": request.method,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last-resort handler; logs the traceback and hides it from the client."""
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        error_message = exc.detail
    else:
        status_code = 500
        error_message = "Internal server error"
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": error_message,
            "type": type(exc).__name__,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }

"""
Orders API
Accepts orders against shared inventory; fulfillment happens in app.worker.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
from typing import Optional
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from app.core_settings import Settings, get_settings
from app.api.routes import router as orders_router
from app.application.reservation import is_positive_int
from app.domain.errors import ReservationError
from app.infrastructure.db import create_db_engine, create_session_factory, init_models

# Service configuration
SERVICE_NAME = "orders-api"
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")
SERVICE_DESCRIPTION = "Order reservation service"
SERVICE_ROOT = os.path.join(os.path.dirname(__file__), "..")

logger = get_logger(__name__)

def run_migrations(settings: Settings) -> None:
    logger.info("Running database migrations")
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=SERVICE_ROOT,
        env={**os.environ, "DATABASE_URL": settings.database_url},
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

def _validation_error_code(exc: RequestValidationError) -> str:
    """
    Map pydantic errors onto the API's 400 codes.

    The request-level checks win: a bad ``user_id`` or a missing/empty
    ``items`` list is ``invalid_request`` even when a line item is also bad.
    """
    errors = exc.errors()
    if any(tuple(error.get("loc", ()))[:1] == ("path",) for error in errors):
        return "invalid_id"

    body = exc.body
    if not isinstance(body, dict):
        return "invalid_request"
    items = body.get("items")
    if not is_positive_int(body.get("user_id")) or not isinstance(items, list) or not items:
        return "invalid_request"

    # ("body", "items", <index>, ...): a malformed line item
    for error in errors:
        loc = tuple(error.get("loc", ()))
        if loc[:2] == ("body", "items") and len(loc) > 2:
            return "invalid_items"
    return "invalid_request"

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    setup_logging(
        service_name=SERVICE_NAME,
        level=os.getenv("LOG_LEVEL", settings.LOG_LEVEL)
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle management"""
        logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

        engine = create_db_engine(settings.database_url)
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)

        if settings.RUN_MIGRATIONS:
            try:
                run_migrations(settings)
            except Exception as e:
                logger.error(f"Migration error: {e}")

        try:
            init_models(engine)
            logger.info("Database models initialized")
        except Exception as e:
            logger.error(f"Failed to initialize database models: {e}")
            raise

        logger.info(f"{SERVICE_NAME} started successfully")

        yield

        logger.info(f"Shutting down {SERVICE_NAME}")
        engine.dispose()

    app = FastAPI(
        title=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(ReservationError)
    async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _validation_error_code(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(
            "store_query_failed",
            exc_info=exc,
            extra={'extra_fields': {'path': request.url.path, 'err': str(exc)}}
        )
        return JSONResponse(status_code=500, content={"error": "internal_error"})

    health_service = ServiceHealth(SERVICE_NAME, lambda: app.state.engine, SERVICE_VERSION)
    app.include_router(health_service.create_health_router())

    app.include_router(orders_router)

    @app.get("/info")
    async def info():
        """Service information endpoint"""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "description": SERVICE_DESCRIPTION,
            "environment": os.getenv("ENVIRONMENT", "development"),
            "endpoints": {
                "orders": "/orders",
                "products": "/products",
                "healthz": "/healthz",
                "health": "/health",
                "ready": "/health/ready",
                "metrics": "/metrics",
                "docs": "/api/docs"
            }
        }

    return app

def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.PORT)

app = create_app()

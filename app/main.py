from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import logging

from app.common.exceptions import LedgerError
from app.common.middleware import SecurityHeadersMiddleware, RequestTimingMiddleware
from app.core.config import settings, Settings
from app.database.database import Database
from app.dependencies.dbDependecies import db_dependency
from app.modules.notifications.events import EventPublisher

# Routers
from app.modules.receivables.router import router as receivables_router, admin_router as receivables_admin_router
from app.modules.cylinders.router import router as cylinders_router
from app.modules.assets.router import router as assets_router
from app.modules.sales.router import router as sales_router

# Import models for table creation
import app.modules.drivers.models
import app.modules.customers.models
import app.modules.products.models
import app.modules.inventory.models
import app.modules.sales.models
import app.modules.receivables.models
import app.modules.audit.models

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def create_app(app_settings: Optional[Settings] = None, database: Optional[Database] = None,
               event_publisher: Optional[EventPublisher] = None) -> FastAPI:
    """
    Build the API. Nothing connects here; the engine is created on startup
    unless a ready Database is handed in.
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title="GasLedger API",
        description="Receivables ledger and cylinder inventory reconciliation for LPG distributors",
        version="1.0.0",
        docs_url="/docs" if app_settings.ENVIRONMENT != "production" else None,
        redoc_url="/redoc" if app_settings.ENVIRONMENT != "production" else None
    )
    app.state.settings = app_settings
    app.state.database = database or Database(app_settings=app_settings)
    app.state.event_publisher = event_publisher or EventPublisher()

    # Middleware (order matters!)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.kind, "details": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "ValidationError", "details": jsonable_encoder(exc.errors())},
        )

    app.include_router(receivables_router, prefix=API_PREFIX)
    app.include_router(receivables_admin_router, prefix=API_PREFIX)
    app.include_router(cylinders_router, prefix=API_PREFIX)
    app.include_router(assets_router, prefix=API_PREFIX)
    app.include_router(sales_router, prefix=API_PREFIX)

    @app.get("/")
    async def read_root():
        return {
            "message": "GasLedger API is running",
            "version": "1.0.0",
            "environment": app_settings.ENVIRONMENT
        }

    @app.get("/health")
    def health_check(db: db_dependency):
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "environment": app_settings.ENVIRONMENT}

    @app.on_event("startup")
    def startup_event():
        logger.info("GasLedger API starting up...")
        logger.info(f"Environment: {app_settings.ENVIRONMENT}")
        app.state.database.connect()
        # Create database tables (only for development - use migrate.py elsewhere)
        if app_settings.ENVIRONMENT == "development":
            app.state.database.create_all()

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("GasLedger API shutting down...")
        app.state.database.shutdown()

    return app


app = create_app()

# inventory_recon/main.py
# Inventory Recon - purchase orders, transit and weighted-average stock
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from inventory_recon.settings import settings
from inventory_recon.database import init_db, close_db, check_db_health
from inventory_recon.errors import ReconciliationError, StoreFailure, ValidationError
from inventory_recon.routers.inventory import router as inventory_router
from inventory_recon.routers.purchasing import router as purchasing_router

VERSION = "1.0.0"

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from inventory_recon.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger("inventory_recon")

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db(create_tables=settings.CREATE_TABLES_ON_STARTUP)
    logger.info("Database initialised")
    yield
    await close_db()
    logger.info("Database connections closed")

# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Inventory Recon API",
    version=VERSION,
    description="Purchase order ingestion, transit tracking and stock receiving",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(purchasing_router)
app.include_router(inventory_router)

# ---------------------------------------------------------
# Error rendering
# ---------------------------------------------------------
@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    # commits in the routers run outside the service-level mapping
    logger.error("%s %s store error: %s", request.method, request.url.path, exc)
    body = StoreFailure("Store operation failed").to_dict()
    return JSONResponse(status_code=StoreFailure.status_code, content=body)

@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    body = ValidationError("Invalid request").to_dict()
    body["details"] = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=ValidationError.status_code, content=body)

# ---------------------------------------------------------
# Endpoints
# ---------------------------------------------------------
@app.get("/health")
async def health():
    """Health check endpoint with database status."""
    result = {"status": "ok", "version": VERSION}
    db_health = await check_db_health()
    result["database"] = db_health
    if db_health.get("status") != "healthy":
        result["status"] = "degraded"
    return result

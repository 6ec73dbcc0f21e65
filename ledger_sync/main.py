from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from ledger_sync.database.database import store

# Import routers
from ledger_sync.modules.numbering.router import numbering_router
from ledger_sync.modules.catalog.router import catalog_router
from ledger_sync.modules.invoices.router import invoices_router
from ledger_sync.modules.balances.router import balances_router
from ledger_sync.modules.cash_collections.router import collections_router
from ledger_sync.modules.sync.router import sync_router
from ledger_sync.modules.reports.router import reports_router

# Import models for table creation
import ledger_sync.modules.numbering.models
import ledger_sync.modules.catalog.models
import ledger_sync.modules.invoices.models
import ledger_sync.modules.balances.models
import ledger_sync.modules.cash_collections.models
import ledger_sync.modules.sync.models

from ledger_sync.core.config import settings
from ledger_sync.core.exceptions import LedgerError

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Ledger Sync API",
    description="Facturación y cobros locales con conciliación contra el ERP",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Include routers
app.include_router(numbering_router)
app.include_router(catalog_router)
app.include_router(invoices_router)
app.include_router(balances_router)
app.include_router(collections_router)
app.include_router(sync_router)
app.include_router(reports_router)

# Create database tables (no migrations; the local store is created on first start)
store.create_schema()


@app.get("/")
async def read_root():
    return {
        "message": "Ledger Sync API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Ledger Sync API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    if not settings.GATEWAY_FACTORY:
        logger.warning("GATEWAY_FACTORY not set; sync endpoints will answer 503")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Ledger Sync API shutting down...")

"""
FastAPI Application

Read API over the cumulative snapshots and the customer address dimension.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from salesdw.config import get_settings
from salesdw.config.logging import configure_logging
from salesdw.database.connection import close_database, init_database
from salesdw.exceptions import (
    AttributeChangeOrderError,
    BackfillError,
    ConfigError,
    PeriodOrderError,
    SalesDWError,
)
from salesdw.serving.api.middleware import RequestLoggingMiddleware
from salesdw.serving.api.routes import customers_router, health_router, snapshots_router

settings = get_settings()
logger = structlog.get_logger(__name__)


def error_status(error: SalesDWError) -> int:
    """HTTP status for a domain error"""
    if isinstance(error, (ConfigError, PeriodOrderError)):
        return 400
    if isinstance(error, (BackfillError, AttributeChangeOrderError)):
        return 409
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    logger.info("Starting sales warehouse API", environment=settings.app_env)

    await init_database()

    yield

    logger.info("Shutting down...")
    await close_database()


app = FastAPI(
    title="Sales Warehouse API",
    description="Cumulative sales snapshots and customer history",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(health_router, prefix="/api/v1", tags=["Health"])
app.include_router(snapshots_router, prefix="/api/v1/snapshots", tags=["Snapshots"])
app.include_router(customers_router, prefix="/api/v1/customers", tags=["Customers"])


@app.exception_handler(SalesDWError)
async def domain_error_handler(request: Request, exc: SalesDWError) -> JSONResponse:
    status_code = error_status(exc)
    logger.warning(
        "Request failed with domain error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/api/v1/info")
async def api_info():
    """API information endpoint."""
    return {
        "name": "Sales Warehouse API",
        "version": settings.version,
        "environment": settings.app_env,
        "documentation": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)

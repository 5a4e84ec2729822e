"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from trustsync.api.dependencies import get_config, get_status_service
from trustsync.api.routes import status
from trustsync.services.engine import ReconciliationService
from trustsync.services.os_adapter import validate_os_table
from trustsync.utils.logger import setup_logger

# Load configuration
config = get_config()

# Setup logging
setup_logger(config)
logger = logging.getLogger("trustsync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan event handler."""
    # Startup
    logger.info(f"Starting {config.app.title} v{config.app.version} ({config.mode.value} mode)")
    validate_os_table()

    service = ReconciliationService(config, get_status_service())
    service.start()
    app.state.reconciliation = service

    yield

    # Shutdown
    logger.info(f"Shutting down {config.app.title}")
    service.stop()


# Create FastAPI app
app = FastAPI(
    title=config.app.title,
    version=config.app.version,
    debug=config.app.debug,
    description="""
    **step-ca trustsync** - keeps container and host trust stores in line with a step-ca instance.

    ## Endpoints
    - `/health`: liveness of this process
    - `/api/status`: trigger state, recent reconciliation passes and per-target outcomes
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Include API routers
app.include_router(status.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": config.app.version}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=config.app.host, port=config.app.port, reload=config.app.debug)

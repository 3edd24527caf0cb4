"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from subca.api.dependencies import get_config, get_services
from subca.api.errors import register_exception_handlers
from subca.api.routes import audit, ca, cert, crl, download, ocsp
from subca.utils.logger import setup_logger

# Load configuration
config = get_config()

# Setup logging
setup_logger(config)
logger = logging.getLogger("subca")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan event handler."""
    # Startup
    logger.info(f"Starting {config.app.title} v{config.app.version}")
    logger.info(f"Data directory: {config.paths.data_dir}")
    Path(config.paths.logs).mkdir(parents=True, exist_ok=True)

    services = get_services()
    expired = services.ca.refresh_status()
    if expired:
        logger.warning(f"{len(expired)} CA(s) expired since last start")

    yield

    # Shutdown
    services.shutdown()
    logger.info(f"Shutting down {config.app.title}")


# Create FastAPI app
app = FastAPI(
    title=config.app.title,
    version=config.app.version,
    debug=config.app.debug,
    description="""
    **SubCA** - A subordinate Certificate Authority engine.

    ## Features
    - Initialize a subordinate CA, export its CSR and activate it with the parent-signed certificate
    - Issue and renew server, client and CA certificates (RSA, ECDSA, Ed25519)
    - Revoke certificates and publish full and delta CRLs
    - Answer OCSP requests, signed by the CA or a delegated responder
    - Validate certificates against the CA chain

    ## Documentation
    - **Swagger UI**: `/docs` (you are here)
    - **ReDoc**: `/redoc`
    - **OpenAPI Schema**: `/openapi.json`
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

register_exception_handlers(app)

# Include API routers
app.include_router(ca.router)
app.include_router(cert.router)
app.include_router(crl.router)
app.include_router(ocsp.router)
app.include_router(audit.router)
app.include_router(download.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": config.app.version}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="localhost", port=8000, reload=config.app.debug)

"""Identity Reconciliation Service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.clients.contact_store import close_contact_store, get_contact_store
from src.exceptions import InvalidInputError, StoreError, TransientStoreFailure
from src.routers import health, identify
from src.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan management."""
    # Startup
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.create_schema_on_startup:
        await get_contact_store().create_schema()
    yield
    # Shutdown
    await close_contact_store()


app = FastAPI(
    title="Identity Reconciliation",
    description="Links partial contact records into consolidated customer identities",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(InvalidInputError)
async def handle_invalid_input(request: Request, exc: InvalidInputError) -> JSONResponse:
    """Handle missing identifiers that slipped past request validation."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc)},
    )


@app.exception_handler(TransientStoreFailure)
async def handle_transient_store_failure(
    request: Request, exc: TransientStoreFailure
) -> JSONResponse:
    """Handle contention/connectivity failures that outlasted the retries."""
    logger.warning("Transient store failure: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable"},
    )


@app.exception_handler(StoreError)
async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
    """Handle non-retryable store failures."""
    logger.error("Store error: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.exception_handler(ValidationError)
async def handle_validation_error(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Handle Pydantic ValidationError and return 422."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def handle_unhandled_exceptions(request: Request, exc: Exception) -> JSONResponse:
    """Catch and log all unhandled exceptions."""
    logger.exception("Unhandled error processing %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Register routers
app.include_router(health.router)
app.include_router(identify.router)


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint."""
    return {"service": "identity-reconciliation", "version": "0.1.0"}

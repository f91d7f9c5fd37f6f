"""Health check endpoint."""

from fastapi import APIRouter

from src.routers.deps import ContactStoreDep
from src.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    contact_store: ContactStoreDep,
) -> HealthResponse:
    """Check service health including database connectivity."""
    database_healthy = await contact_store.ping()

    return HealthResponse(
        status="healthy" if database_healthy else "degraded",
        database=database_healthy,
    )

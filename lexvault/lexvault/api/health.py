import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from lexvault.dependencies import Services, get_services
from lexvault.schemas import ComponentHealth, HealthResponse

logger = logging.getLogger(__name__)
router = APIRouter()

HEALTH_PROBE_KEY = ".health"


async def _probe(name: str, check: Callable[[], Awaitable[object]]) -> ComponentHealth:
    start = time.monotonic()
    try:
        await check()
    except Exception as e:
        logger.error(f"{name} health check failed: {e}")
        return ComponentHealth(
            status="unhealthy",
            latency_ms=int((time.monotonic() - start) * 1000),
            error=str(e),
        )
    return ComponentHealth(status="healthy", latency_ms=int((time.monotonic() - start) * 1000))


@router.get("/health", response_model=HealthResponse)
async def health(services: Services = Depends(get_services)) -> JSONResponse:
    """Report reachability of the relational, cache and blob stores."""

    async def check_database() -> None:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))

    checks = {
        "database": await _probe("Database", check_database),
        "blob_store": await _probe(
            "Blob store", lambda: services.blob_store.exists(HEALTH_PROBE_KEY)
        ),
    }
    if services.redis_client is not None:
        checks["redis"] = await _probe("Redis", services.redis_client.ping)

    healthy = all(c.status == "healthy" for c in checks.values())
    body = HealthResponse(status="healthy" if healthy else "degraded", checks=checks)
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())

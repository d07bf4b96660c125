from datetime import datetime, timezone

from fastapi import APIRouter

from chatbridge.api.dependencies import RegistryDep, SettingsDep
from chatbridge.models.health.responses import HealthResponse

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
async def health_check(settings: SettingsDep, registry: RegistryDep) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
        instances=registry.instance_count(),
    )

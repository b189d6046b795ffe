from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.schemas.health import EngineConfigReport, HealthChecks, HealthResponse
from app.core.config import get_settings
from app.domain.models import utc_now_iso

router = APIRouter(prefix="/v1", tags=["health"])


def _mask(secret: str | None) -> str | None:
    if not secret:
        return None
    return f"{secret[:10]}..."


@router.get("/health", response_model=HealthResponse)
def health():
    """Configuration report; never calls the engine."""
    settings = get_settings()
    return HealthResponse(
        timestamp=utc_now_iso(),
        env=settings.env,
        storeBackend=settings.store_backend,
        engine=EngineConfigReport(
            backend=settings.engine_backend,
            apiKey=_mask(settings.dify_api_key),
            apiKeyLength=len(settings.dify_api_key or ""),
            baseURL=settings.dify_api_base_url,
        ),
        checks=HealthChecks(
            apiKeySet=bool(settings.dify_api_key),
            baseURLSet=bool(settings.dify_api_base_url),
        ),
    )

from __future__ import annotations

from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe for load balancers and monitoring.

    Returns:
        dict: ``status`` is always "ok"; ``rate_limit_enabled`` reports
            whether routes are currently being throttled.
    """

    return {"status": "ok", "rate_limit_enabled": settings.app.rate_limit_enabled}

"""
Health check and status endpoints
"""
from fastapi import APIRouter, Request
from datetime import datetime, timezone
from ranklens.config import get_settings
from ranklens.models.base import check_db
from ranklens.utils.cache import CacheBackendError
from ranklens import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Liveness plus dependency checks

    The cache is an accelerator, so an unreachable cache only degrades the
    service; an unreachable project store does too, since cached project
    lists keep serving until they expire.
    """
    services = getattr(request.app.state, "services", None)
    checks = {"database": False, "cache": False}

    if services is not None:
        checks["database"] = check_db(services.projects.session_factory)
        try:
            checks["cache"] = await services.cache.store.ping()
        except CacheBackendError:
            checks["cache"] = False

    return {
        "status": "healthy" if all(checks.values()) else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


@router.get("/status")
async def get_status(request: Request):
    """Configuration summary and upstream request counters"""
    services = getattr(request.app.state, "services", None)
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "cache": {
            "backend": services.cache.store.backend_name if services else None,
            "prefix": settings.cache_prefix,
            "ttl_seconds": {
                "page_metrics": settings.page_metrics_ttl_seconds,
                "keyword_ranks": settings.keyword_ranks_ttl_seconds,
                "projects": settings.projects_ttl_seconds,
            },
        },
        "warming": {
            "enabled": settings.enable_cache_warming,
            "schedule": settings.warm_schedule,
            "windows": settings.warm_window_days,
        },
        "upstream": services.connector.get_status() if services else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

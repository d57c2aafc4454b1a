"""
Cache management endpoints
"""
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ranklens.api.deps import Services, check_secret, get_services, require_secret
from ranklens.services.project_store import PROJECTS_CACHE_KEY
from ranklens.utils.cache import CacheBackendError
from ranklens.utils.logger import log

router = APIRouter(prefix="/cache", tags=["cache"])


class CacheRefreshRequest(BaseModel):
    secret: Optional[str] = None
    project_ids: Optional[List[str]] = None
    days: Optional[List[int]] = None


@router.post("/refresh")
async def refresh_cache(request: CacheRefreshRequest, services: Services = Depends(get_services)):
    """
    Drop and rebuild derived caches

    Runs every (project, window) pair concurrently; failed pairs are listed
    in the response without aborting the rest.
    """
    check_secret(request.secret)
    windows = [d for d in (request.days or []) if d > 0] or None

    result = await services.warmer.refresh(project_ids=request.project_ids, windows=windows)
    if not result["projects"]:
        raise HTTPException(status_code=400, detail="No projects found to refresh")

    return {
        "success": True,
        "message": f"Cache refreshed for {len(result['projects'])} projects with {len(result['windows'])} day periods each",
        **result,
    }


@router.get("/status", dependencies=[Depends(require_secret)])
async def cache_status(services: Services = Depends(get_services)):
    """Cache backend health and the project-list entry"""
    store = services.cache.store
    try:
        healthy = await store.ping()
        error = None
    except CacheBackendError as e:
        log.warning(f"Cache status ping failed: {e}")
        healthy = False
        error = str(e)

    return {
        "success": True,
        "backend": store.backend_name,
        "healthy": healthy,
        "error": error,
        "projects_entry": await services.cache.cache_info(PROJECTS_CACHE_KEY),
        "upstream": services.connector.get_status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

"""
Keyword Ranking API Endpoints

Keyword-level rank observations and per-URL rank overviews.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from typing import Optional

from ranklens.api.deps import Services, get_project_or_404, get_services
from ranklens.connectors.rank_query_connector import UpstreamError
from ranklens.services.observation_normalizer import QueryTargetError
from ranklens.utils.logger import log

router = APIRouter(prefix="/rankings", tags=["rankings"])


def _cached_response(result: dict) -> JSONResponse:
    return JSONResponse(
        content=result["payload"],
        headers={
            "X-Cache-Duration": str(result["duration_ms"]),
            "X-Cache-Key": result["cache_key"],
        },
    )


@router.get("/{project_id}/keywords")
async def get_keyword_ranks(
    project_id: str,
    days: int = Query(21, gt=0, le=540, description="Window length in days"),
    refresh: bool = Query(False),
    site: Optional[str] = Query(None),
    project=Depends(get_project_or_404),
    services: Services = Depends(get_services),
):
    """Daily (date, page, query) observations for the project's goal keywords"""
    try:
        result = await services.keyword_ranks.fetch_keyword_ranks(
            project, days=days, refresh=refresh, site_override=site
        )
    except QueryTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        log.error(f"Keyword ranks upstream failure for {project_id}: {e}")
        raise HTTPException(status_code=502, detail={"error": "Upstream error", "status": e.status, "body": e.body})
    return _cached_response(result)


@router.get("/{project_id}/overview")
async def get_rank_overview(
    project_id: str,
    days: int = Query(30, gt=0, le=540, description="Window length in days"),
    top_n: int = Query(10, gt=0, le=100, description="Threshold for in-top-N counts"),
    refresh: bool = Query(False),
    site: Optional[str] = Query(None),
    project=Depends(get_project_or_404),
    services: Services = Depends(get_services),
):
    """
    Per-URL rank overview

    Keyword series are merged, gap filled and rolled up per URL with
    improved / declined / in-top-N counts.
    """
    try:
        result = await services.keyword_ranks.rank_overview(
            project, days=days, top_n=top_n, refresh=refresh, site_override=site
        )
    except QueryTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        log.error(f"Rank overview upstream failure for {project_id}: {e}")
        raise HTTPException(status_code=502, detail={"error": "Upstream error", "status": e.status, "body": e.body})
    return _cached_response(result)

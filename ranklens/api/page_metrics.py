"""
Page Metrics API Endpoints

Daily rank/traffic metrics for the URLs tracked in a project.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from typing import Optional

from ranklens.api.deps import Services, get_project_or_404, get_services
from ranklens.connectors.rank_query_connector import UpstreamError
from ranklens.services.observation_normalizer import QueryTargetError
from ranklens.services.page_summary import DEFAULT_WINDOW_DAYS
from ranklens.utils.logger import log

router = APIRouter(prefix="/page-metrics", tags=["page-metrics"])


# Declared before /{project_id} so "summary" is not taken as a project id
@router.get("/summary")
async def get_page_metrics_summary(
    window: int = Query(DEFAULT_WINDOW_DAYS, gt=0, le=270, description="Period length in days"),
    refresh: bool = Query(False, description="Recompute each project's page metrics"),
    services: Services = Depends(get_services),
):
    """
    Period-over-period summary across all projects

    Clicks, impressions, CTR and impression-weighted position for the latest
    `window` days against the `window` days before, per project, plus a
    TSV rendering for pasting into a spreadsheet.  Projects that fail are
    listed under `errors`.
    """
    summary = await services.page_metrics.summarize_projects(services.projects, window=window, refresh=refresh)
    return JSONResponse(
        content=summary,
        headers={"Cache-Control": "s-maxage=1800, stale-while-revalidate=900"},
    )


@router.get("/{project_id}")
async def get_page_metrics(
    project_id: str,
    days: int = Query(30, gt=0, le=540, description="Window length in days"),
    limit: int = Query(0, ge=0, description="Top pages by impressions (0 = all)"),
    refresh: bool = Query(False, description="Recompute instead of serving the cached result"),
    site: Optional[str] = Query(None, description="Override the derived sc-domain site"),
    project=Depends(get_project_or_404),
    services: Services = Depends(get_services),
):
    """
    Page metrics for a project

    Returns normalized daily rows (date, page, avg_position, impressions,
    clicks) plus a meta block.  Cached for 24h per (project, site, days, limit).
    """
    try:
        result = await services.page_metrics.fetch_page_metrics(
            project, days=days, limit=limit, refresh=refresh, site_override=site
        )
    except QueryTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        log.error(f"Page metrics upstream failure for {project_id}: {e}")
        raise HTTPException(status_code=502, detail={"error": "Upstream error", "status": e.status, "body": e.body})

    return JSONResponse(
        content=result["payload"],
        headers={
            "X-Cache-Duration": str(result["duration_ms"]),
            "X-Cache-Key": result["cache_key"],
        },
    )

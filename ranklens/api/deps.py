"""
Shared FastAPI dependencies

Service handles are built once in the app lifespan and stored on app.state;
routers pull them from there.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Query, Request

from ranklens.config import get_settings
from ranklens.connectors.rank_query_connector import RankQueryConnector
from ranklens.services.cache_service import CacheService
from ranklens.services.cache_warmer import CacheWarmer
from ranklens.services.keyword_rank_service import KeywordRankService
from ranklens.services.page_metrics_service import PageMetricsService
from ranklens.services.project_store import ProjectStore
from ranklens.utils.cache import CacheStore


@dataclass
class Services:
    cache: CacheService
    connector: RankQueryConnector
    projects: ProjectStore
    page_metrics: PageMetricsService
    keyword_ranks: KeywordRankService
    warmer: CacheWarmer


def build_services(store: CacheStore, connector: Optional[RankQueryConnector] = None, session_factory=None) -> Services:
    cache = CacheService(store)
    connector = connector or RankQueryConnector()
    projects = ProjectStore(cache, session_factory) if session_factory else ProjectStore(cache)
    page_metrics = PageMetricsService(cache, connector)
    keyword_ranks = KeywordRankService(cache, connector)
    warmer = CacheWarmer(cache, projects, page_metrics, keyword_ranks)
    return Services(
        cache=cache,
        connector=connector,
        projects=projects,
        page_metrics=page_metrics,
        keyword_ranks=keyword_ranks,
        warmer=warmer,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return services


def check_secret(secret: Optional[str]) -> None:
    expected = get_settings().cache_refresh_secret
    if not expected or secret != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_secret(secret: Optional[str] = Query(None, description="Cache refresh secret")):
    check_secret(secret)


async def get_project_or_404(project_id: str, services: Services = Depends(get_services)):
    project = await services.projects.get_project_by_id(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Unknown project id: {project_id}")
    return project

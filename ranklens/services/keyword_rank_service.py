"""
Keyword Rank Service

Tracks the goal keywords listed against each project URL.

fetch_keyword_ranks() returns cached, normalized (date, page, query)
observations for the tracked keywords.  rank_overview() runs the full
reconciliation pipeline on top of them:

    normalize -> build series -> dedupe -> fill gaps -> aggregate by URL
"""
import time
from datetime import date
from typing import Dict, Iterable, List, Optional

from ranklens.config import get_settings
from ranklens.connectors.rank_query import build_keyword_rank_query
from ranklens.connectors.rank_query_connector import RankQueryConnector
from ranklens.services.cache_service import CacheService
from ranklens.services.observation_normalizer import (
    RankObservation,
    RequestedKeyword,
    derive_query_target,
    normalize_rows,
)
from ranklens.services.project_store import Project
from ranklens.services.rank_series import (
    KeywordSeries,
    build_keyword_series,
    dedupe_series,
    fill_gaps,
)
from ranklens.services.url_aggregator import TOP_N_DEFAULT, aggregate_by_url
from ranklens.utils.helpers import elapsed_ms, hash_params
from ranklens.utils.logger import log

KEYWORD_RANKS_FAMILY = "keyword-ranks"


def reconcile_series(
    observations: Iterable[RankObservation],
    days: int,
    requested: Optional[Iterable[RequestedKeyword]] = None,
    today: Optional[date] = None,
) -> List[KeywordSeries]:
    """Build, dedupe and gap-fill keyword series for a window"""
    series = dedupe_series(build_keyword_series(observations, days, requested, today=today))
    for item in series:
        item.history = fill_gaps(item.history)
    return series


def build_overview(
    observations: Iterable[RankObservation],
    days: int,
    requested: Optional[Iterable[RequestedKeyword]] = None,
    top_n: int = TOP_N_DEFAULT,
    today: Optional[date] = None,
) -> Dict:
    """Pure pipeline: observations -> per-URL aggregates and totals"""
    series = reconcile_series(observations, days, requested, today=today)
    aggregates = aggregate_by_url(series, days, top_n=top_n)

    trends = [item for agg in aggregates for item in agg.items]
    return {
        "days": days,
        "top_n": top_n,
        "urls": [agg.to_dict() for agg in aggregates],
        "totals": {
            "urls": len(aggregates),
            "keywords": len(trends),
            "improved": sum(1 for t in trends if t.delta > 0),
            "declined": sum(1 for t in trends if t.delta < 0),
            "in_top_n": sum(1 for t in trends if t.end is not None and t.end <= top_n),
            "dropped_from_top_n": sum(1 for t in trends if t.dropped_from_top_n),
        },
    }


class KeywordRankService:
    """Keyword-level rank history for a project's goal keywords"""

    def __init__(self, cache: CacheService, connector: RankQueryConnector):
        self.cache = cache
        self.connector = connector
        self.ttl_seconds = get_settings().keyword_ranks_ttl_seconds

    async def fetch_keyword_ranks(
        self,
        project: Project,
        days: int = 30,
        refresh: bool = False,
        site_override: Optional[str] = None,
    ) -> Dict:
        """
        Fetch (or serve cached) keyword observations.

        Returns:
            {"payload": {"results", "requested", "meta"}, "duration_ms", "cache_key"}
        """
        if project is None:
            raise ValueError("Project not found")

        target = derive_query_target(project.rows, site_override=site_override, with_keywords=True)
        query = build_keyword_rank_query(target.site, target.conditions, days=days)
        params_hash = hash_params({"id": project.id, "site": target.site, "days": days})
        key_parts = [KEYWORD_RANKS_FAMILY, project.id, params_hash]

        if refresh:
            await self.cache.invalidate_exact(key_parts)

        async def produce():
            rows = await self.connector.fetch_rows(query)
            observations = normalize_rows(rows, target)
            return {
                "results": [obs.to_dict() for obs in observations],
                "requested": [r.to_dict() for r in target.requested],
                "meta": {
                    "row_count": len(project.rows),
                    "observations": len(observations),
                    "parsed_keywords": len(target.requested),
                    "canonical_urls": len(target.canonical_urls),
                    "conditions": len(target.conditions),
                    "site": target.site,
                    "source_meta": project.meta,
                    "last_updated": project.last_updated,
                },
            }

        get_data = self.cache.wrap(produce, key_parts, ttl_seconds=self.ttl_seconds)

        start = time.perf_counter()
        payload = await get_data()
        duration = elapsed_ms(start)
        log.info(f"[keyword-ranks] {project.id} days={days} in {duration}ms")

        return {
            "payload": payload,
            "duration_ms": duration,
            "cache_key": f"{KEYWORD_RANKS_FAMILY}:{project.id}:{params_hash}",
        }

    async def rank_overview(
        self,
        project: Project,
        days: int = 30,
        top_n: int = TOP_N_DEFAULT,
        refresh: bool = False,
        site_override: Optional[str] = None,
    ) -> Dict:
        """Per-URL rollups built from the (cached) keyword observations"""
        fetched = await self.fetch_keyword_ranks(project, days=days, refresh=refresh, site_override=site_override)
        payload = fetched["payload"]

        observations = [RankObservation.from_dict(r) for r in payload["results"]]
        requested = [RequestedKeyword(**r) for r in payload.get("requested", [])]
        overview = build_overview(observations, days, requested, top_n=top_n)
        overview["meta"] = payload.get("meta", {})

        return {
            "payload": overview,
            "duration_ms": fetched["duration_ms"],
            "cache_key": fetched["cache_key"],
        }

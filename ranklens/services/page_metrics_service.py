"""
Page Metrics Service

Per-request flow:

    DERIVE_TARGET -> BUILD_QUERY -> CACHE_LOOKUP -> (miss: FETCH_UPSTREAM -> NORMALIZE) -> RETURN

Results are cached per (project, site, days, limit) for 24h.  refresh=True
drops that one entry before the lookup so the request recomputes.
"""
import time
from datetime import datetime, timezone
from typing import Dict, Optional

from ranklens.config import get_settings
from ranklens.connectors.rank_query import build_page_metrics_query
from ranklens.connectors.rank_query_connector import RankQueryConnector
from ranklens.services.cache_service import CacheService
from ranklens.services.observation_normalizer import derive_query_target, normalize_rows
from ranklens.services.page_summary import (
    DEFAULT_WINDOW_DAYS,
    build_summary_table,
    compute_period_comparison,
    order_by_last_updated,
    site_label,
)
from ranklens.services.project_store import Project, ProjectStore
from ranklens.utils.helpers import elapsed_ms, hash_params
from ranklens.utils.logger import log

PAGE_METRICS_FAMILY = "page-metrics"


class PageMetricsService:
    """Daily page-level rank/traffic metrics for a project's tracked URLs"""

    def __init__(self, cache: CacheService, connector: RankQueryConnector):
        self.cache = cache
        self.connector = connector
        self.ttl_seconds = get_settings().page_metrics_ttl_seconds

    async def fetch_page_metrics(
        self,
        project: Project,
        days: int = 30,
        limit: int = 0,
        refresh: bool = False,
        site_override: Optional[str] = None,
    ) -> Dict:
        """
        Fetch (or serve cached) page metrics.

        Returns:
            {"payload": {"results": [...], "meta": {...}}, "duration_ms": int, "cache_key": str}

        Raises:
            QueryTargetError: project rows yield no usable target
            UpstreamError: the ranking query service failed
        """
        if project is None:
            raise ValueError("Project not found")

        target = derive_query_target(project.rows, site_override=site_override)
        query = build_page_metrics_query(target.site, target.conditions, days=days, limit=limit)
        params_hash = hash_params({
            "id": project.id,
            "site": target.site,
            "days": days,
            "limit": limit,
        })
        key_parts = [PAGE_METRICS_FAMILY, project.id, params_hash]

        if refresh:
            await self.cache.invalidate_exact(key_parts)

        async def produce():
            data = await self.connector.run_query(query)
            observations = normalize_rows(data["results"], target)
            meta = {
                "row_count": len(observations),
                "days": days,
                "limit": limit,
                "pages": len({obs.page for obs in observations}),
                "conditions": len(target.conditions),
                "targets": len(target.target_pages),
                "site": target.site,
                "source_meta": project.meta,
                "last_updated": project.last_updated,
            }
            extra = {k: v for k, v in data.items() if k not in ("results", "meta")}
            return {**extra, "results": [obs.to_dict() for obs in observations], "meta": meta}

        get_data = self.cache.wrap(produce, key_parts, ttl_seconds=self.ttl_seconds)

        start = time.perf_counter()
        payload = await get_data()
        duration = elapsed_ms(start)
        log.info(f"[page-metrics] {project.id} days={days} limit={limit} in {duration}ms")

        return {
            "payload": payload,
            "duration_ms": duration,
            "cache_key": f"{PAGE_METRICS_FAMILY}:{project.id}:{params_hash}",
        }

    async def summarize_projects(
        self,
        projects: ProjectStore,
        window: int = DEFAULT_WINDOW_DAYS,
        refresh: bool = False,
    ) -> Dict:
        """
        Period-over-period summary for every project.

        Fetches 2 x window days of page metrics per project (through the
        same cache as fetch_page_metrics) and compares the latest window with
        the one before.  A project that fails is listed under `errors` and
        does not stop the others.

        Returns:
            {"window_days", "fetch_days", "generated_at", "results",
             "errors", "header", "rows", "tsv"}
        """
        fetch_days = window * 2
        results, errors = [], []

        for summary in await projects.load_project_summaries():
            try:
                project = await projects.get_project_by_id(summary["id"])
                if project is None:
                    errors.append({"id": summary["id"], "label": summary["label"], "error": "Project data not found"})
                    continue

                result = await self.fetch_page_metrics(project, days=fetch_days, limit=0, refresh=refresh)
                payload = result["payload"]
                site = payload["meta"].get("site") or (project.meta or {}).get("site")
                results.append({
                    "id": project.id,
                    "label": project.label,
                    "last_updated": project.last_updated,
                    "meta": payload["meta"],
                    "site": site,
                    "site_label": site_label(site),
                    "url_count": len(project.rows),
                    **compute_period_comparison(payload["results"], window),
                })
            except Exception as e:
                log.error(f"[page-metrics] summary failed for {summary['id']}: {e}")
                errors.append({"id": summary["id"], "label": summary["label"], "error": str(e)})

        results = order_by_last_updated(results)
        log.info(f"[page-metrics] summary window={window}: {len(results)} projects, {len(errors)} errors")
        return {
            "window_days": window,
            "fetch_days": fetch_days,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            **build_summary_table(results),
            "results": results,
            "errors": errors,
        }

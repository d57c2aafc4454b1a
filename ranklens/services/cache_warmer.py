"""
Cache Warmer

Recomputes derived caches for many projects x window lengths.  Each
(project, window) pair runs independently and concurrently, and within a
pair the page-metrics and keyword-rank families are rebuilt side by side so
one failing family does not leave the other cold.  Failures are logged and
reported without stopping the other pairs, and are not retried.

A project without keyword targets has nothing to rank; its keyword family is
reported as "skipped" rather than failed.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from ranklens.config import get_settings
from ranklens.services.cache_service import CacheService, invalidate_project_cache
from ranklens.services.keyword_rank_service import KEYWORD_RANKS_FAMILY, KeywordRankService
from ranklens.services.observation_normalizer import QueryTargetError
from ranklens.services.page_metrics_service import PAGE_METRICS_FAMILY, PageMetricsService
from ranklens.services.project_store import Project, ProjectStore
from ranklens.utils.logger import log

REFRESHED = "refreshed"
SKIPPED = "skipped"
FAILED = "failed"


class CacheWarmer:
    def __init__(
        self,
        cache: CacheService,
        projects: ProjectStore,
        page_metrics: PageMetricsService,
        keyword_ranks: KeywordRankService,
    ):
        self.cache = cache
        self.projects = projects
        self.page_metrics = page_metrics
        self.keyword_ranks = keyword_ranks

    async def _warm_pair(self, project: Project, days: int) -> Dict:
        """Rebuild both families for one pair; returns the per-family outcome"""
        families = (PAGE_METRICS_FAMILY, KEYWORD_RANKS_FAMILY)
        outcomes = await asyncio.gather(
            self.page_metrics.fetch_page_metrics(project, days=days, refresh=True),
            self.keyword_ranks.fetch_keyword_ranks(project, days=days, refresh=True),
            return_exceptions=True,
        )

        statuses, errors = {}, {}
        for family, outcome in zip(families, outcomes):
            if not isinstance(outcome, BaseException):
                statuses[family] = REFRESHED
            elif family == KEYWORD_RANKS_FAMILY and isinstance(outcome, QueryTargetError):
                log.info(f"Skipped {family} for {project.id} ({days} days): {outcome}")
                statuses[family] = SKIPPED
            else:
                log.error(f"Failed to warm {family} for {project.id} ({days} days): {outcome}")
                statuses[family] = FAILED
                errors[family] = str(outcome)

        entry = {"project_id": project.id, "days": days, "families": statuses}
        if errors:
            entry["error"] = "; ".join(f"{family}: {message}" for family, message in errors.items())
        return entry

    async def refresh(
        self,
        project_ids: Optional[Iterable[str]] = None,
        windows: Optional[Iterable[int]] = None,
    ) -> Dict:
        """
        Drop and rebuild page-metrics and keyword-rank caches.

        Args:
            project_ids: Limit to these projects (default: all)
            windows: Window lengths in days (default: settings.warm_window_days)

        Returns:
            Dict with projects, windows, refreshed pairs and failed pairs.
            A pair is failed when any family failed; each entry carries a
            `families` map of family -> refreshed/skipped/failed.
        """
        windows = list(windows or get_settings().warm_window_days)
        wanted = set(project_ids or [])

        all_projects = await self.projects.load_projects(force=True)
        targets = [p for p in all_projects if not wanted or p.id in wanted]
        if not targets:
            log.warning("Cache refresh: no projects matched")
            return {"projects": [], "windows": windows, "refreshed": [], "failed": []}

        log.info(f"Cache refresh: {len(targets)} projects x {len(windows)} windows")
        for project in targets:
            await invalidate_project_cache(self.cache, project.id)

        pairs: List[Tuple[Project, int]] = [(p, d) for p in targets for d in windows]
        outcomes = await asyncio.gather(
            *(self._warm_pair(project, days) for project, days in pairs),
            return_exceptions=True,
        )

        refreshed, failed = [], []
        for (project, days), outcome in zip(pairs, outcomes):
            if isinstance(outcome, BaseException):
                log.error(f"Failed to warm cache for {project.id} ({days} days): {outcome}")
                failed.append({"project_id": project.id, "days": days, "error": str(outcome)})
            elif FAILED in outcome["families"].values():
                failed.append(outcome)
            else:
                refreshed.append(outcome)

        log.info(f"Cache refresh finished: {len(refreshed)} refreshed, {len(failed)} failed")
        return {
            "projects": [p.id for p in targets],
            "windows": windows,
            "refreshed": refreshed,
            "failed": failed,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

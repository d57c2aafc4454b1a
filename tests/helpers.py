"""
Test doubles shared by the suite: an always-failing cache store and a fake
upstream connector that returns canned rows.
"""
from datetime import datetime, timedelta, timezone

from ranklens.connectors.rank_query_connector import RankQueryConnector, UpstreamError
from ranklens.utils.cache import CacheBackendError, CacheStore


class FailingCacheStore(CacheStore):
    """Every call raises, like an unreachable Redis"""

    backend_name = "failing"

    def __init__(self):
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise CacheBackendError("connection refused")

    async def get(self, key):
        self._fail()

    async def set_with_expiry(self, key, value, ttl_seconds):
        self._fail()

    async def delete(self, key):
        self._fail()

    async def delete_by_pattern(self, pattern):
        self._fail()

    async def ttl(self, key):
        self._fail()

    async def ping(self):
        self._fail()


class FakeRankQueryConnector(RankQueryConnector):
    """Returns canned rows; fails for sites listed in fail_sites"""

    def __init__(self, rows=None, fail_sites=()):
        super().__init__(endpoint="http://upstream.test/api/query", timeout_seconds=5)
        self.rows = rows or []
        self.fail_sites = set(fail_sites)
        self.queries = []

    async def run_query(self, query):
        self.queries.append(query)
        if query.site in self.fail_sites:
            self.record_request(success=False)
            raise UpstreamError(500, "boom " * 2000)
        self.record_request(success=True)
        rows = self.rows(query) if callable(self.rows) else self.rows
        return {"results": [dict(r) for r in rows]}

    async def close(self):
        return None


def days_ago(n: int) -> str:
    return (datetime.now(timezone.utc).date() - timedelta(days=n)).isoformat()

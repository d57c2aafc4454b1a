"""
Ranking Query Service Connector

POSTs structured rank queries to the upstream Search Console database
service and returns its flat result rows.

Failures are never retried here: a non-2xx status, timeout or transport error
raises UpstreamError with the status and a truncated response body.
"""
import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from ranklens.config import get_settings
from ranklens.connectors.base_connector import BaseConnector
from ranklens.connectors.rank_query import RankQuery
from ranklens.utils.logger import log

ERROR_BODY_LIMIT = 4000

HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "User-Agent": "RankLens/1.0",
}


class UpstreamError(Exception):
    """The ranking query service failed or could not be reached"""

    def __init__(self, status: Optional[int], body: str = "", message: Optional[str] = None):
        self.status = status
        self.body = (body or "")[:ERROR_BODY_LIMIT]
        if message is None:
            message = f"Upstream error {status}: {self.body}" if status is not None else f"Upstream error: {self.body}"
        super().__init__(message)


class RankQueryConnector(BaseConnector):
    """aiohttp client for the ranking query service"""

    def __init__(self, endpoint: Optional[str] = None, timeout_seconds: Optional[int] = None):
        super().__init__("rank_query")
        settings = get_settings()
        self.endpoint = endpoint or settings.upstream_endpoint
        self.timeout_seconds = timeout_seconds or settings.upstream_timeout_seconds
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> bool:
        """Create HTTP session"""
        if not self.session or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(headers=HEADERS, timeout=timeout)
        return True

    async def validate_connection(self) -> bool:
        await self.connect()
        return self.session is not None and not self.session.closed

    async def close(self) -> None:
        """Close HTTP session"""
        if self.session and not self.session.closed:
            await self.session.close()

    async def run_query(self, query: RankQuery) -> Dict[str, Any]:
        """
        Execute one query.

        Returns:
            The decoded JSON body; `results` is always a list.
        """
        await self.connect()
        payload = query.to_payload()
        log.info(f"[rank_query] POST {self.endpoint} site={query.site} sql={len(query.sql)} chars")

        try:
            async with self.session.post(self.endpoint, json=payload) as response:
                if response.status < 200 or response.status >= 300:
                    text = await response.text(errors="replace")
                    self.record_request(success=False)
                    log.error(f"[rank_query] upstream {response.status}: {text[:1000]}")
                    raise UpstreamError(response.status, text)
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            self.record_request(success=False)
            log.error(f"[rank_query] timed out after {self.timeout_seconds}s")
            raise UpstreamError(None, f"timed out after {self.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            self.record_request(success=False)
            log.error(f"[rank_query] request failed: {e}")
            raise UpstreamError(None, str(e)) from e
        except ValueError as e:
            self.record_request(success=False)
            raise UpstreamError(None, f"invalid JSON response: {e}") from e

        self.record_request(success=True)
        if not isinstance(data, dict):
            data = {"results": data if isinstance(data, list) else []}
        results = data.get("results")
        data["results"] = results if isinstance(results, list) else []
        return data

    async def fetch_rows(self, query: RankQuery) -> List[Dict]:
        data = await self.run_query(query)
        return data["results"]

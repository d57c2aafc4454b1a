"""Upstream connectors for RankLens"""

from ranklens.connectors.base_connector import BaseConnector
from ranklens.connectors.rank_query_connector import RankQueryConnector, UpstreamError

__all__ = [
    "BaseConnector",
    "RankQueryConnector",
    "UpstreamError",
]

"""Database models for RankLens"""

from ranklens.models.base import Base
from ranklens.models.synced_data import SyncedData

__all__ = [
    "Base",
    "SyncedData",
]

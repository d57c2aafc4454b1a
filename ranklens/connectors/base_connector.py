"""
Base connector class for upstream data sources
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict


class BaseConnector(ABC):
    """Base class for all upstream connectors"""

    def __init__(self, name: str):
        self.name = name
        self.last_request = None
        self.request_count = 0
        self.error_count = 0

    @abstractmethod
    async def connect(self) -> bool:
        """Establish connection to data source"""
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Validate connection is working"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections"""
        pass

    def record_request(self, success: bool) -> None:
        self.last_request = datetime.now(timezone.utc)
        self.request_count += 1
        if not success:
            self.error_count += 1

    def get_status(self) -> Dict[str, Any]:
        """Get connector status"""
        return {
            "name": self.name,
            "last_request": self.last_request.isoformat() if self.last_request else None,
            "request_count": self.request_count,
            "error_count": self.error_count,
            "error_rate": self.error_count / max(self.request_count, 1),
        }

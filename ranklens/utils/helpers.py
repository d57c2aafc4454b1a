"""
Helper utilities
"""
from typing import Any
import hashlib
import json
import time


def hash_params(data: Any, length: int = 16) -> str:
    """Stable short hash of request parameters, used in cache keys"""
    data_str = json.dumps(data, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha1(data_str.encode("utf-8")).hexdigest()[:length]


def elapsed_ms(start: float) -> int:
    """Milliseconds since a time.perf_counter() reading"""
    return int(round((time.perf_counter() - start) * 1000))

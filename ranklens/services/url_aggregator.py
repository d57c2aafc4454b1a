"""
URL Aggregator

Groups gap-filled keyword series by page and derives a per-page rollup:
the daily best rank across the page's keywords, plus summary counts.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ranklens.services.rank_series import (
    MAX_VISIBLE_RANK,
    History,
    KeywordSeries,
    fill_gaps,
    format_rank,
    is_drop_from_top_n,
    safe_rank,
    trend_delta,
)

TOP_N_DEFAULT = 10


@dataclass
class KeywordTrend:
    """A keyword series restricted to the window, with its start/end movement"""
    series: KeywordSeries
    window: History
    start: Optional[int]
    end: Optional[int]
    delta: int
    dropped_from_top_n: bool

    def to_dict(self) -> Dict:
        data = self.series.to_dict()
        data.update({
            "history": list(self.window),
            "start": self.start,
            "end": self.end,
            "current_label": format_rank(self.end),
            "delta": self.delta,
            "dropped_from_top_n": self.dropped_from_top_n,
        })
        return data


@dataclass
class URLAggregate:
    display_url: str
    items: List[KeywordTrend] = field(default_factory=list)
    rollup_series: History = field(default_factory=list)
    best_current: Optional[int] = None
    avg_current: Optional[int] = None
    improved_count: int = 0
    declined_count: int = 0
    in_top_n_count: int = 0

    @property
    def total(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict:
        return {
            "display_url": self.display_url,
            "items": [item.to_dict() for item in self.items],
            "rollup_series": list(self.rollup_series),
            "best_current": self.best_current,
            "avg_current": self.avg_current,
            "improved_count": self.improved_count,
            "declined_count": self.declined_count,
            "in_top_n_count": self.in_top_n_count,
            "total": self.total,
        }


def keyword_trend(series: KeywordSeries, window_days: int, top_n: int = TOP_N_DEFAULT) -> KeywordTrend:
    window = list(series.history[-window_days:]) if window_days > 0 else []
    start = window[0] if window else None
    end = window[-1] if window else None
    return KeywordTrend(
        series=series,
        window=window,
        start=start,
        end=end,
        delta=trend_delta(start, end),
        dropped_from_top_n=is_drop_from_top_n(start, end, top_n),
    )


def rollup_series(items: List[KeywordTrend], days: int) -> History:
    """Daily best rank across items (None where no item has data), then gap filled"""
    raw: History = []
    for i in range(days):
        values = [it.window[i] for it in items if i < len(it.window) and it.window[i] is not None]
        raw.append(min(values) if values else None)
    return fill_gaps(raw)


def summarize_group(display_url: str, items: List[KeywordTrend], top_n: int = TOP_N_DEFAULT) -> URLAggregate:
    days = max((len(it.window) for it in items), default=0)

    best_raw = min((safe_rank(it.end) for it in items), default=safe_rank(None))
    avg_raw = sum(safe_rank(it.end) for it in items) / len(items) if items else safe_rank(None)
    avg_rounded = int(avg_raw + 0.5)

    return URLAggregate(
        display_url=display_url,
        items=items,
        rollup_series=rollup_series(items, days),
        best_current=best_raw if best_raw <= MAX_VISIBLE_RANK else None,
        avg_current=avg_rounded if avg_rounded <= MAX_VISIBLE_RANK else None,
        improved_count=sum(1 for it in items if it.delta > 0),
        declined_count=sum(1 for it in items if it.delta < 0),
        in_top_n_count=sum(1 for it in items if it.end is not None and it.end <= top_n),
    )


def aggregate_by_url(
    series: Iterable[KeywordSeries],
    window_days: int,
    top_n: int = TOP_N_DEFAULT,
) -> List[URLAggregate]:
    """Group deduplicated, gap-filled series by display_url (first-appearance order)"""
    groups: Dict[str, List[KeywordTrend]] = {}
    for item in series:
        groups.setdefault(item.display_url, []).append(keyword_trend(item, window_days, top_n))
    return [summarize_group(url, items, top_n) for url, items in groups.items()]

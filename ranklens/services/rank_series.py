"""
Keyword rank series: building, merging and gap filling

A series history holds one slot per day of the active window (oldest first).
Each slot is an integer rank or None.

Constants used across the whole pipeline:
- MAX_VISIBLE_RANK: ceiling for filled histories and the "visible" cut-off
- UNRANKED_RANK: what safe_rank() reports for None / beyond-visible ranks
- RANK_CEILING: clamp for raw ranks and the worst-rank stand-in when merging
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from ranklens.services.observation_normalizer import RankObservation, RequestedKeyword

MAX_VISIBLE_RANK = 100
UNRANKED_RANK = MAX_VISIBLE_RANK + 1
RANK_CEILING = 120

History = List[Optional[int]]


@dataclass
class KeywordSeries:
    keyword: str
    display_url: str
    history: History = field(default_factory=list)
    tag: Optional[str] = None
    volume: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "keyword": self.keyword,
            "display_url": self.display_url,
            "history": list(self.history),
            "tag": self.tag,
            "volume": self.volume,
        }


# ---------------------------------------------------------------------------
# Trend & delta
# ---------------------------------------------------------------------------

def clamp_rank(value: Optional[int], ceiling: int = MAX_VISIBLE_RANK) -> Optional[int]:
    if value is None:
        return None
    return max(1, min(ceiling, value))


def safe_rank(value: Optional[int]) -> int:
    """Rank for arithmetic: None or beyond-visible count as UNRANKED_RANK"""
    if value is None or value > MAX_VISIBLE_RANK:
        return UNRANKED_RANK
    return value


def trend_delta(start: Optional[int], end: Optional[int]) -> int:
    """Positive = improved (rank number went down)"""
    return safe_rank(start) - safe_rank(end)


def is_drop_from_top_n(start: Optional[int], end: Optional[int], n: int) -> bool:
    """Inside the top n at window start, outside it at window end"""
    return safe_rank(start) <= n and safe_rank(end) > n


def format_rank(value: Optional[int]) -> str:
    return "N/A" if value is None or value > MAX_VISIBLE_RANK else f"#{value}"


# ---------------------------------------------------------------------------
# Merge / dedupe
# ---------------------------------------------------------------------------

def merge_histories(a: Sequence[Optional[int]], b: Sequence[Optional[int]]) -> History:
    """
    Day-wise best (lowest) rank of two histories.

    A day missing in one history keeps the other's real rank; a day is None
    only when both are None.  The shorter history is treated as None-padded.
    """
    length = max(len(a), len(b))
    merged: History = []
    for i in range(length):
        ai = a[i] if i < len(a) else None
        bi = b[i] if i < len(b) else None
        if ai is None and bi is None:
            merged.append(None)
            continue
        va = RANK_CEILING if ai is None else ai
        vb = RANK_CEILING if bi is None else bi
        merged.append(min(va, vb))
    return merged


def _dedupe_key(value: Optional[str]) -> str:
    return "".join(str(value or "").lower().split())


def dedupe_series(series: Iterable[KeywordSeries]) -> List[KeywordSeries]:
    """
    Collapse series with the same (keyword, url) ignoring case and whitespace.

    Histories are merged with merge_histories, the shorter keyword label wins,
    and output keeps first-appearance order.
    """
    merged: Dict[str, KeywordSeries] = {}
    for item in series:
        key = f"{_dedupe_key(item.keyword)}__{_dedupe_key(item.display_url)}"
        current = merged.get(key)
        if current is None:
            merged[key] = KeywordSeries(
                keyword=item.keyword,
                display_url=item.display_url,
                history=list(item.history),
                tag=item.tag,
                volume=item.volume,
            )
            continue
        current.history = merge_histories(current.history, item.history)
        if len(str(item.keyword or "")) < len(str(current.keyword or "")):
            current.keyword = item.keyword
        if current.tag is None:
            current.tag = item.tag
        if current.volume is None:
            current.volume = item.volume
    return list(merged.values())


# ---------------------------------------------------------------------------
# Gap filling
# ---------------------------------------------------------------------------

def fill_interior_gaps(series: Sequence[Optional[int]]) -> History:
    """
    Linearly interpolate None runs between two known ranks.

    Known values are clamped to [1, MAX_VISIBLE_RANK] as they are written;
    leading and trailing None runs are left alone.
    """
    out: History = list(series)
    last_idx = -1
    last_val: Optional[int] = None
    for i, current in enumerate(out):
        if current is None:
            continue
        current = clamp_rank(current)
        if last_val is not None:
            gap = i - last_idx
            for step in range(1, gap):
                interpolated = _round_half_up(last_val + (current - last_val) * step / gap)
                out[last_idx + step] = clamp_rank(interpolated)
        out[i] = current
        last_idx = i
        last_val = current
    return out


def fill_exterior_gaps(series: Sequence[Optional[int]]) -> History:
    """Carry the last known rank forward over trailing None slots; leading Nones stay None"""
    out: History = list(series)
    last_seen = next((v for v in reversed(out) if v is not None), None)
    if last_seen is None:
        return out
    for i in range(len(out) - 1, -1, -1):
        if out[i] is not None:
            break
        out[i] = last_seen
    return out


def fill_gaps(series: Sequence[Optional[int]]) -> History:
    """Interior pass first, then the trailing-edge pass"""
    return fill_exterior_gaps(fill_interior_gaps(series))


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; ranks round .5 up
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


# ---------------------------------------------------------------------------
# Building series from observations
# ---------------------------------------------------------------------------

def window_days(days: int, today: Optional[date] = None) -> List[date]:
    """The `days` calendar days ending yesterday (UTC), oldest first"""
    if today is None:
        today = datetime.now(timezone.utc).date()
    anchor = today - timedelta(days=1)
    return [anchor - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def build_keyword_series(
    observations: Iterable[RankObservation],
    days: int,
    requested: Optional[Iterable[RequestedKeyword]] = None,
    today: Optional[date] = None,
) -> List[KeywordSeries]:
    """
    One series per (page, query) with len(history) == days.

    Requested pairs are seeded first so tracked keywords with no data still
    appear (all None).  Observations outside the window are ignored.
    """
    index = {day: i for i, day in enumerate(window_days(days, today))}
    by_key: Dict[str, KeywordSeries] = {}

    for pair in requested or []:
        if not pair.page or not pair.keyword:
            continue
        key = f"{pair.page}||{pair.keyword}"
        if key not in by_key:
            by_key[key] = KeywordSeries(
                keyword=pair.keyword,
                display_url=pair.page,
                history=[None] * days,
                tag=pair.tag,
                volume=pair.volume,
            )

    for obs in observations:
        if not obs.page or not obs.query or obs.avg_position is None:
            continue
        slot = index.get(obs.date)
        if slot is None:
            continue
        key = f"{obs.page}||{obs.query}"
        item = by_key.get(key)
        if item is None:
            item = by_key[key] = KeywordSeries(keyword=obs.query, display_url=obs.page, history=[None] * days)
        item.history[slot] = clamp_rank(_round_half_up(obs.avg_position), RANK_CEILING)

    return list(by_key.values())

"""
Page Summary

Period-over-period traffic summary built from page-metrics rows: the last
`window` days with data against the `window` days before them.

Each day sums clicks and impressions across pages.  Position is
impression-weighted; rows without impressions only count towards a plain
mean, used when no row in the period had impressions.
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

DEFAULT_WINDOW_DAYS = 7
METRICS = ("clicks", "impressions", "ctr", "position")
DATE_FIELDS = ("date", "CAST(date AS DATE)", "dt")

SUMMARY_HEADER = [
    "Project",
    "Site",
    "Completed Pages",
    "Last Week\nClicks",
    "Period Week\nClicks",
    "Last Week\nImpressions",
    "Period Week\nImpressions",
    "Last Week\nCTR",
    "Period Week\nCTR",
    "Last Week\nPosition",
    "Period Week\nPosition",
]


@dataclass
class DailyTotals:
    clicks: float = 0
    impressions: float = 0
    position_weighted: float = 0
    position_weight: float = 0
    fallback_positions: List[float] = field(default_factory=list)


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalise_date(value: Any) -> Optional[str]:
    """YYYY-MM-DD (UTC) for a date, datetime or ISO string; None when unreadable"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value.isoformat()
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat()


def aggregate_daily_metrics(results: Iterable[Dict]) -> Dict[str, DailyTotals]:
    daily: Dict[str, DailyTotals] = {}
    for row in results or []:
        if not row:
            continue
        raw_date = next((row[k] for k in DATE_FIELDS if row.get(k) is not None), None)
        day = normalise_date(raw_date)
        if not day:
            continue

        totals = daily.setdefault(day, DailyTotals())
        clicks = _finite(row.get("clicks"))
        impressions = _finite(row.get("impressions"))
        position = _finite(row.get("avg_position"))

        if clicks is not None:
            totals.clicks += clicks
        if impressions is not None:
            totals.impressions += impressions
        if position is not None:
            if impressions is not None and impressions > 0:
                totals.position_weighted += position * impressions
                totals.position_weight += impressions
            else:
                totals.fallback_positions.append(position)
    return daily


def summarise_period(daily: Dict[str, DailyTotals], dates: List[str]) -> Optional[Dict]:
    """Totals over the given days; None for an empty period"""
    if not dates:
        return None

    clicks = impressions = weighted = weight = 0
    fallback: List[float] = []
    for day in dates:
        totals = daily.get(day)
        if totals is None:
            continue
        clicks += totals.clicks
        impressions += totals.impressions
        weighted += totals.position_weighted
        weight += totals.position_weight
        fallback.extend(totals.fallback_positions)

    if weight > 0:
        position = weighted / weight
    elif fallback:
        position = sum(fallback) / len(fallback)
    else:
        position = None

    return {
        "clicks": clicks,
        "impressions": impressions,
        "ctr": clicks / impressions if impressions > 0 else None,
        "position": position,
    }


def _delta(current: Optional[Dict], previous: Optional[Dict]) -> Dict:
    delta = {}
    for metric in METRICS:
        now = current.get(metric) if current else None
        before = previous.get(metric) if previous else None
        delta[metric] = now - before if now is not None and before is not None else None
    return delta


def compute_period_comparison(results: Iterable[Dict], window: int = DEFAULT_WINDOW_DAYS) -> Dict:
    """
    Compare the latest `window` days that have data with the `window` days before.

    Days are taken from the data, not the calendar, so a gap in the rows
    shifts both periods back.  With fewer than 2 x window days the previous
    period is shorter (or empty, giving None).

    Returns:
        {"current": {...} | None, "previous": {...} | None, "delta": {metric: float | None}}
    """
    daily = aggregate_daily_metrics(results)
    dates = sorted(daily)
    count = len(dates)

    current = summarise_period(daily, dates[-window:])
    previous = summarise_period(daily, dates[max(0, count - 2 * window):max(0, count - window)])
    return {"current": current, "previous": previous, "delta": _delta(current, previous)}


def site_label(site: Optional[str]) -> str:
    """Readable host[/path] for an sc-domain property or URL"""
    if not site or not isinstance(site, str) or not site.strip():
        return ""
    raw = site.strip()
    if raw.startswith("sc-domain:"):
        return raw[len("sc-domain:"):].lower()

    parts = urlsplit(raw if "://" in raw else f"https://{raw.lstrip('/')}")
    host = (parts.hostname or "").lower()
    if not host:
        return raw
    path = parts.path.rstrip("/")
    return f"{host}{path}"


def _last_updated_key(item: Dict):
    value = item.get("last_updated")
    parsed = None
    if value:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            parsed = None
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    # undated projects go last
    return (parsed is None, parsed or datetime.min.replace(tzinfo=timezone.utc), item["label"].casefold())


def order_by_last_updated(results: List[Dict]) -> List[Dict]:
    return sorted(results, key=_last_updated_key)


def _integer(value) -> str:
    return "" if value is None else str(int(math.floor(value + 0.5)))


def _percent(value) -> str:
    return "" if value is None else f"{value * 100:.2f}%"


def _decimal(value) -> str:
    return "" if value is None else f"{value:.2f}"


def escape_tsv_cell(value: Any) -> str:
    if value is None:
        return ""
    text = str(value)
    if '"' in text:
        return '"' + text.replace('"', '""') + '"'
    if "\t" in text or "\n" in text:
        return f'"{text}"'
    return text


def build_summary_table(results: List[Dict]) -> Dict:
    """Spreadsheet-ready rows (and a TSV rendering) for summarized projects"""
    rows = []
    for item in results:
        current = item.get("current") or {}
        previous = item.get("previous") or {}
        rows.append([
            item["label"],
            item.get("site_label") or item.get("site") or "",
            _integer(item.get("url_count")),
            _integer(current.get("clicks")),
            _integer(previous.get("clicks")),
            _integer(current.get("impressions")),
            _integer(previous.get("impressions")),
            _percent(current.get("ctr")),
            _percent(previous.get("ctr")),
            _decimal(current.get("position")),
            _decimal(previous.get("position")),
        ])

    lines = ["\t".join(escape_tsv_cell(cell) for cell in row) for row in [SUMMARY_HEADER, *rows]]
    return {"header": list(SUMMARY_HEADER), "rows": rows, "tsv": "\n".join(lines)}

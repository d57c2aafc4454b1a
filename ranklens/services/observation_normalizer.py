"""
Observation Normalizer

Turns project rows into a query target (which pages/keywords to ask the
upstream service about) and turns the upstream's loosely shaped result rows
into canonical RankObservation records.

Page identity:
- URLs carrying an /article/<id> segment are keyed by that id, and every page
  sharing the id is reported under the longest URL seen in the project rows.
- Other URLs are keyed by exact string match.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ranklens.utils.logger import log
from ranklens.utils.url_parsing import (
    derive_site,
    extract_article_id,
    safe_decode_url,
)

MIN_IMPRESSIONS_FOR_TOP = 5

# Accepted upstream column names per canonical field, first present wins
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "date": ("date", "CAST(date AS DATE)", "dt"),
    "page": ("page", "page_url", "url"),
    "query": ("query", "keyword"),
    "avg_position": ("avg_position", "avg_pos", "position"),
    "impressions": ("impressions", "total_impressions", "sum_impressions", "impr"),
    "clicks": ("clicks", "total_clicks", "sum_clicks", "click"),
}

# Project record columns (matched ignoring case, spaces and underscores)
URL_FIELD = "url"
KEYWORD_FIELD = "goalkeyword"
TAG_FIELD = "trackingtag"

_KEYWORD_SPLIT = re.compile(r"\r?\n|,|，|、|;|；|/|／")
_VOLUME_SUFFIX = re.compile(r"\((\d+)\)(?!.*\(\d+\))")
_VOLUME_ANY = re.compile(r"\(\d+\)")
_WHITESPACE = re.compile(r"\s+")


class QueryTargetError(ValueError):
    """Project rows cannot be turned into an upstream query"""


class ProjectHasNoRows(QueryTargetError):
    pass


class SiteNotDerivable(QueryTargetError):
    pass


class NoQueryTargets(QueryTargetError):
    pass


@dataclass
class RankObservation:
    """One (date, page, query) measurement from the upstream service"""
    date: date
    page: str
    query: str = ""
    avg_position: Optional[float] = None
    impressions: Optional[int] = None
    clicks: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "date": self.date.isoformat(),
            "page": self.page,
            "query": self.query,
            "avg_position": self.avg_position,
            "impressions": self.impressions,
            "clicks": self.clicks,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RankObservation":
        return cls(
            date=parse_day(data["date"]),
            page=data["page"],
            query=data.get("query") or "",
            avg_position=data.get("avg_position"),
            impressions=data.get("impressions"),
            clicks=data.get("clicks"),
        )


@dataclass
class PageCondition:
    """One page (by article id or exact URL), optionally narrowed to keywords"""
    article_id: Optional[str] = None
    exact_url: Optional[str] = None
    keywords: List[str] = field(default_factory=list)


@dataclass
class RequestedKeyword:
    page: str
    keyword: str
    tag: Optional[str] = None
    volume: Optional[int] = None

    def to_dict(self) -> Dict:
        return {"page": self.page, "keyword": self.keyword, "tag": self.tag, "volume": self.volume}


@dataclass
class QueryTarget:
    """Everything derived from project rows before the upstream call"""
    site: str
    canonical_urls: Dict[str, str] = field(default_factory=dict)
    exact_urls: Dict[str, str] = field(default_factory=dict)
    conditions: List[PageCondition] = field(default_factory=list)
    requested: List[RequestedKeyword] = field(default_factory=list)

    @property
    def target_pages(self) -> List[str]:
        pages = list(self.canonical_urls.values()) + list(self.exact_urls)
        return list(dict.fromkeys(p for p in pages if p))

    def canonical_page(self, raw_page: Any) -> Optional[str]:
        """Map an upstream page string onto the project's canonical URL"""
        if raw_page is None:
            return None
        page = safe_decode_url(str(raw_page).strip())
        if not page:
            return None
        article_id = extract_article_id(page)
        if article_id:
            return self.canonical_urls.get(article_id, page)
        return page


# ---------------------------------------------------------------------------
# Field resolution
# ---------------------------------------------------------------------------

def resolve_field(row: Dict, name: str) -> Any:
    """Return the first non-null value among the aliases for a canonical field"""
    for alias in FIELD_ALIASES[name]:
        value = row.get(alias)
        if value is not None:
            return value
    return None


def _record_key(key: str) -> str:
    return re.sub(r"[_\s]+", "", key.strip().lower())


def get_record_field(record: Dict, target_key: str) -> Any:
    """Look up a project record column ignoring case, spaces and underscores"""
    if not isinstance(record, dict):
        return None
    desired = _record_key(target_key)
    for key, value in record.items():
        if isinstance(key, str) and _record_key(key) == desired:
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number == number and number not in (float("inf"), float("-inf")) else None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    return int(round(number)) if number is not None else None


def parse_day(value: Any) -> Optional[date]:
    """Accept date, datetime, or an ISO-ish string ('2024-05-01', '2024-05-01T00:00:00Z')"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Noise filter
# ---------------------------------------------------------------------------

def is_noise(avg_position: Optional[float], impressions: Optional[int]) -> bool:
    """Rank-1 readings backed by a handful of impressions are measurement artifacts"""
    if avg_position is None or impressions is None:
        return False
    return int(avg_position + 0.5) == 1 and 0 < impressions < MIN_IMPRESSIONS_FOR_TOP


# ---------------------------------------------------------------------------
# Keyword cell parsing
# ---------------------------------------------------------------------------

def parse_keyword_lines(value: Any) -> List[str]:
    """Split a goal-keyword cell on newlines, commas, semicolons and slashes"""
    if value is None:
        return []
    return [part.strip() for part in _KEYWORD_SPLIT.split(str(value)) if part.strip()]


def extract_volume(text: Any) -> Optional[int]:
    """Search volume written as a trailing '(1200)'"""
    if not text:
        return None
    match = _VOLUME_SUFFIX.search(str(text))
    return int(match.group(1)) if match else None


def clean_keyword(text: Any) -> Optional[Tuple[str, str]]:
    """Return (display keyword, whitespace-free match key) with volume markers removed"""
    if not text:
        return None
    display = _VOLUME_ANY.sub("", str(text)).strip()
    if not display:
        return None
    return display, _WHITESPACE.sub("", display)


# ---------------------------------------------------------------------------
# DERIVE_TARGET
# ---------------------------------------------------------------------------

def derive_query_target(
    records: Iterable[Any],
    site_override: Optional[str] = None,
    with_keywords: bool = False,
) -> QueryTarget:
    """
    Build the canonical/exact URL maps and page conditions for a project.

    with_keywords=False: one condition per distinct page (page metrics).
    with_keywords=True: only rows with goal keywords count; each page's
    condition is narrowed to its keywords, and requested (page, keyword)
    pairs are recorded so keywords with no data still get a series.
    """
    rows = [r for r in records or [] if isinstance(r, dict)]
    if not rows:
        raise ProjectHasNoRows("Project has no data rows")

    site = site_override
    if not site:
        for record in rows:
            site = derive_site(get_record_field(record, URL_FIELD))
            if site:
                break
    if not site:
        raise SiteNotDerivable("Unable to derive site from data")

    target = QueryTarget(site=site)
    by_page: Dict[str, PageCondition] = {}
    requested: Dict[str, RequestedKeyword] = {}
    # page identity -> canonical display url resolved after all rows are seen
    identity_of_request: Dict[str, str] = {}

    for record in rows:
        raw_url = get_record_field(record, URL_FIELD)
        page_url = safe_decode_url(str(raw_url).strip()) if raw_url is not None else ""
        if not page_url:
            continue

        keywords: List[Tuple[str, str, Optional[int]]] = []
        if with_keywords:
            for line in parse_keyword_lines(get_record_field(record, KEYWORD_FIELD)):
                cleaned = clean_keyword(line)
                if cleaned:
                    keywords.append((cleaned[0], cleaned[1], extract_volume(line)))
            if not keywords:
                continue

        article_id = extract_article_id(page_url)
        if article_id:
            existing = target.canonical_urls.get(article_id)
            if not existing or len(page_url) > len(existing):
                target.canonical_urls[article_id] = page_url
            identity = f"id:{article_id}"
            condition = by_page.setdefault(identity, PageCondition(article_id=article_id))
        else:
            target.exact_urls.setdefault(page_url, page_url)
            identity = f"url:{page_url}"
            condition = by_page.setdefault(identity, PageCondition(exact_url=page_url))

        if not with_keywords:
            continue

        tag_raw = get_record_field(record, TAG_FIELD)
        tag = str(tag_raw).strip() if tag_raw is not None and str(tag_raw).strip() else None
        for display, spaceless, volume in keywords:
            if spaceless not in condition.keywords:
                condition.keywords.append(spaceless)
            key = f"{identity}||{spaceless}"
            if key not in requested:
                requested[key] = RequestedKeyword(page="", keyword=display, tag=tag, volume=volume)
                identity_of_request[key] = identity

    if not by_page:
        raise NoQueryTargets("No valid conditions derived from data")

    target.conditions = list(by_page.values())
    for key, item in requested.items():
        identity = identity_of_request[key]
        kind, _, value = identity.partition(":")
        item.page = target.canonical_urls[value] if kind == "id" else value
        target.requested.append(item)

    log.debug(
        f"Derived query target for {site}: {len(target.conditions)} conditions, "
        f"{len(target.target_pages)} pages, {len(target.requested)} keywords"
    )
    return target


# ---------------------------------------------------------------------------
# NORMALIZE
# ---------------------------------------------------------------------------

def normalize_row(row: Dict, target: QueryTarget) -> Optional[RankObservation]:
    """Map one upstream row onto RankObservation; None if it has no day or page"""
    day = parse_day(resolve_field(row, "date"))
    page = target.canonical_page(resolve_field(row, "page"))
    if day is None or not page:
        return None
    query = resolve_field(row, "query")
    return RankObservation(
        date=day,
        page=page,
        query=str(query).strip() if query is not None else "",
        avg_position=_to_float(resolve_field(row, "avg_position")),
        impressions=_to_int(resolve_field(row, "impressions")),
        clicks=_to_int(resolve_field(row, "clicks")),
    )


def normalize_rows(rows: Iterable[Dict], target: QueryTarget, drop_noise: bool = True) -> List[RankObservation]:
    """Normalize upstream rows, dropping unusable rows and (optionally) noisy top-1 readings"""
    observations = []
    skipped = 0
    noisy = 0
    for row in rows or []:
        if not isinstance(row, dict):
            skipped += 1
            continue
        obs = normalize_row(row, target)
        if obs is None:
            skipped += 1
            continue
        if drop_noise and is_noise(obs.avg_position, obs.impressions):
            noisy += 1
            continue
        observations.append(obs)

    if skipped or noisy:
        log.debug(f"Normalized {len(observations)} rows ({skipped} unusable, {noisy} noisy top-1 dropped)")
    return observations

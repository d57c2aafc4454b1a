"""
Project Store

Reads tracked projects from the synced_data table.  The raw JSON is written
by a spreadsheet export and sometimes carries unescaped control characters,
so parsing goes through a sanitize-and-reparse pass; a record that still
won't parse is treated as absent.
"""
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ranklens.config import get_settings
from ranklens.models.base import SessionLocal
from ranklens.models.synced_data import SyncedData
from ranklens.services.cache_service import CacheService, invalidate_project_cache
from ranklens.utils.logger import log

PROJECTS_CACHE_KEY = ["projects"]

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")


class MalformedStoredJson(ValueError):
    """Stored project JSON can't be parsed even after sanitizing"""


@dataclass
class Project:
    id: str
    label: str
    rows: List[Dict] = field(default_factory=list)
    meta: Optional[Any] = None
    last_updated: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "label": self.label,
            "rows": self.rows,
            "meta": self.meta,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Project":
        return cls(
            id=data["id"],
            label=data.get("label") or data["id"],
            rows=data.get("rows") or [],
            meta=data.get("meta"),
            last_updated=data.get("last_updated"),
        )

    def summary(self) -> Dict:
        return {
            "id": self.id,
            "label": self.label,
            "row_count": len(self.rows),
            "last_updated": self.last_updated,
        }


def _escape_control(match) -> str:
    return "\\u%04x" % ord(match.group(0))


def sanitize_and_parse_json(raw: Any) -> Any:
    """json.loads, retrying once with raw control characters escaped"""
    if not isinstance(raw, (str, bytes)):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except ValueError:
        pass
    try:
        return json.loads(_CONTROL_CHARS.sub(_escape_control, raw))
    except ValueError as e:
        raise MalformedStoredJson(str(e)) from e


def extract_records(parsed: Any) -> List[Dict]:
    """Row records from a top-level list, or from `rows` / `data` of an object"""
    if isinstance(parsed, list):
        candidates = parsed
    elif isinstance(parsed, dict):
        candidates = parsed.get("rows")
        if not isinstance(candidates, list):
            candidates = parsed.get("data")
        if not isinstance(candidates, list):
            candidates = []
    else:
        candidates = []
    return [item for item in candidates if isinstance(item, dict)]


def _isoformat(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        # SQLite hands back naive values; they were written as UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return str(value)


def parse_project_row(sheet_name: str, json_data: Any, last_updated: Any = None) -> Optional[Project]:
    """Turn one synced_data row into a Project; None when its JSON is unreadable"""
    try:
        parsed = sanitize_and_parse_json(json_data)
    except MalformedStoredJson as e:
        log.error(f"Failed to parse project json_data for {sheet_name}: {e}")
        return None

    meta = None
    label = None
    if isinstance(parsed, dict):
        meta = parsed.get("meta")
        if isinstance(parsed.get("label"), str) and parsed["label"].strip():
            label = parsed["label"].strip()

    return Project(
        id=sheet_name,
        label=label or sheet_name,
        rows=extract_records(parsed),
        meta=meta,
        last_updated=_isoformat(last_updated),
    )


class ProjectStore:
    """Project lookups, cached as one list under the `projects` key"""

    def __init__(self, cache: CacheService, session_factory: Callable[[], Session] = SessionLocal):
        self.cache = cache
        self.session_factory = session_factory
        self.ttl_seconds = get_settings().projects_ttl_seconds

    def _query_projects(self) -> List[Dict]:
        db = self.session_factory()
        try:
            rows = db.query(SyncedData).all()
            log.info(f"Loaded {len(rows)} raw project rows from database")
            projects = []
            for row in rows:
                project = parse_project_row(row.sheet_name, row.json_data, row.last_updated)
                if project is not None:
                    projects.append(project.to_dict())
            if not projects:
                log.warning("No valid projects found in database")
            return projects
        finally:
            db.close()

    async def load_projects(self, force: bool = False) -> List[Project]:
        if force:
            await self.cache.invalidate_exact(PROJECTS_CACHE_KEY)

        async def produce():
            return self._query_projects()

        get_projects = self.cache.wrap(produce, PROJECTS_CACHE_KEY, ttl_seconds=self.ttl_seconds)
        return [Project.from_dict(p) for p in await get_projects()]

    async def load_project_summaries(self) -> List[Dict]:
        projects = await self.load_projects()
        summaries = [p.summary() for p in projects]
        return sorted(summaries, key=lambda s: s["label"].casefold())

    async def get_project_by_id(self, project_id: str) -> Optional[Project]:
        """Cached lookup; a miss retries once against a fresh list"""
        if not project_id:
            return None
        for force in (False, True):
            for project in await self.load_projects(force=force):
                if project.id == project_id:
                    return project
        return None

    async def upsert_project(self, project_id: str, payload: Any) -> Project:
        """Store raw project JSON (from the sheet sync) and drop caches derived from it"""
        json_data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        project = parse_project_row(project_id, json_data, datetime.now(timezone.utc))
        if project is None:
            raise MalformedStoredJson(f"Project {project_id} payload is not valid JSON")

        db = self.session_factory()
        try:
            row = db.get(SyncedData, project_id)
            if row is None:
                row = SyncedData(sheet_name=project_id)
                db.add(row)
            row.json_data = json_data
            row.last_updated = datetime.now(timezone.utc)
            db.commit()
        finally:
            db.close()

        await self.cache.invalidate_exact(PROJECTS_CACHE_KEY)
        await invalidate_project_cache(self.cache, project_id)
        log.info(f"Upserted project {project_id} ({len(project.rows)} rows)")
        return project

    async def delete_project(self, project_id: str) -> bool:
        db = self.session_factory()
        try:
            removed = db.query(SyncedData).filter(SyncedData.sheet_name == project_id).delete()
            db.commit()
        finally:
            db.close()

        if not removed:
            return False

        await self.cache.invalidate_exact(PROJECTS_CACHE_KEY)
        await invalidate_project_cache(self.cache, project_id)
        log.info(f"Deleted project {project_id}")
        return True

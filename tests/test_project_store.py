"""
Project store: tolerant JSON parsing, cached lookups and invalidation.
"""
import asyncio
import json
from datetime import datetime, timedelta

import pytest

from ranklens.models.synced_data import SyncedData
from ranklens.services.project_store import (
    PROJECTS_CACHE_KEY,
    MalformedStoredJson,
    ProjectStore,
    extract_records,
    parse_project_row,
    sanitize_and_parse_json,
)


@pytest.fixture
def store(cache, session_factory):
    return ProjectStore(cache, session_factory)


def _insert(session_factory, sheet_name, json_data):
    db = session_factory()
    try:
        db.add(SyncedData(sheet_name=sheet_name, json_data=json_data, last_updated=datetime(2026, 10, 1)))
        db.commit()
    finally:
        db.close()


class TestParsing:
    def test_control_characters_are_escaped_on_retry(self):
        raw = '{"rows": [{"URL": "https://ex.com/a", "Goal Keyword": "a\nb\tc"}]}'
        parsed = sanitize_and_parse_json(raw)
        assert parsed["rows"][0]["Goal Keyword"] == "a\nb\tc"

    def test_unrecoverable_json_raises(self):
        with pytest.raises(MalformedStoredJson):
            sanitize_and_parse_json('{"rows": [')

    def test_non_string_passes_through(self):
        assert sanitize_and_parse_json([{"a": 1}]) == [{"a": 1}]

    def test_extract_records(self):
        assert extract_records([{"a": 1}, "x"]) == [{"a": 1}]
        assert extract_records({"rows": [{"a": 1}]}) == [{"a": 1}]
        assert extract_records({"data": [{"b": 2}]}) == [{"b": 2}]
        assert extract_records({"rows": "nope"}) == []
        assert extract_records("text") == []

    def test_parse_row_uses_label_and_meta(self):
        project = parse_project_row(
            "sheet-1",
            json.dumps({"label": " Sports ", "meta": {"owner": "x"}, "rows": [{"URL": "https://ex.com"}]}),
            datetime(2026, 10, 1, 12, 0),
        )
        assert project.id == "sheet-1"
        assert project.label == "Sports"
        assert project.meta == {"owner": "x"}
        assert project.last_updated == "2026-10-01T12:00:00+00:00"

    def test_parse_row_malformed_is_none(self):
        assert parse_project_row("bad", "{oops") is None


def test_load_skips_malformed_rows(store, session_factory):
    _insert(session_factory, "good", json.dumps([{"URL": "https://ex.com/a"}]))
    _insert(session_factory, "bad", "{not json")

    projects = asyncio.run(store.load_projects())
    assert [p.id for p in projects] == ["good"]
    assert projects[0].rows == [{"URL": "https://ex.com/a"}]


def test_summaries_sorted_by_label(store, session_factory):
    _insert(session_factory, "b", json.dumps({"label": "beta", "rows": [{"URL": "https://ex.com"}]}))
    _insert(session_factory, "a", json.dumps({"label": "Alpha", "rows": []}))

    summaries = asyncio.run(store.load_project_summaries())
    assert [s["label"] for s in summaries] == ["Alpha", "beta"]
    assert summaries[1]["row_count"] == 1


def test_project_list_is_cached(store, session_factory, cache):
    _insert(session_factory, "one", "[]")

    async def run():
        await store.load_projects()
        _insert(session_factory, "two", "[]")
        cached = await store.load_projects()
        forced = await store.load_projects(force=True)
        return cached, forced

    cached, forced = asyncio.run(run())
    assert [p.id for p in cached] == ["one"]
    assert sorted(p.id for p in forced) == ["one", "two"]


def test_lookup_retries_with_fresh_list(store, session_factory):
    async def run():
        assert await store.get_project_by_id("late") is None
        _insert(session_factory, "late", "[]")
        return await store.get_project_by_id("late")

    assert asyncio.run(run()).id == "late"


def test_upsert_then_lookup(store):
    async def run():
        await store.load_projects()
        await store.upsert_project("news", {"label": "News", "rows": [{"URL": "https://ex.com/a"}]})
        return await store.get_project_by_id("news")

    project = asyncio.run(run())
    assert project.label == "News"
    assert len(project.rows) == 1
    assert datetime.fromisoformat(project.last_updated).utcoffset() == timedelta(0)


def test_upsert_rejects_bad_json(store):
    with pytest.raises(MalformedStoredJson):
        asyncio.run(store.upsert_project("news", "{broken"))


def test_delete_invalidates_derived_caches(store, session_factory, cache, memory_store):
    _insert(session_factory, "news", "[]")

    async def run():
        await cache.wrap(_value, ["page-metrics", "news", "h"], ttl_seconds=60)()
        await cache.wrap(_value, ["page-metrics", "other", "h"], ttl_seconds=60)()
        await store.load_projects()
        removed = await store.delete_project("news")
        missing = await store.delete_project("news")
        return removed, missing

    removed, missing = asyncio.run(run())
    assert (removed, missing) == (True, False)
    assert memory_store.keys() == ["test:page-metrics:other:h"]
    assert cache.key_for(PROJECTS_CACHE_KEY) not in memory_store.keys()


async def _value():
    return {"v": 1}

"""
HTTP surface: status codes, headers and secret checks.

The app lifespan is not run; each test installs its own service graph on
app.state with an in-memory cache, SQLite store and fake upstream.
"""
import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from ranklens.api.deps import build_services
from ranklens.config import get_settings
from ranklens.main import app
from ranklens.utils.cache import MemoryCacheStore
from tests.conftest import NEWS_ROWS
from tests.helpers import days_ago

SECRET = "s3cret"


def _rows(query):
    return [
        {"date": days_ago(2), "page": "https://www.example.com/article/123", "query": "seo tools",
         "avg_position": 6.0, "impressions": 90, "clicks": 3},
        {"date": days_ago(1), "page": "https://www.example.com/article/123", "query": "seo tools",
         "avg_position": 4.0, "impressions": 110, "clicks": 5},
    ]


@pytest.fixture
def services(session_factory, make_connector, monkeypatch):
    monkeypatch.setattr(get_settings(), "cache_refresh_secret", SECRET)
    connector = make_connector(rows=_rows, fail_sites={"sc-domain:broken.test"})
    services = build_services(MemoryCacheStore(), connector=connector, session_factory=session_factory)

    async def seed():
        await services.projects.upsert_project("news", {"label": "News", "rows": NEWS_ROWS})
        await services.projects.upsert_project("broken", [{"URL": "https://broken.test/a", "Goal Keyword": "x"}])
        await services.projects.upsert_project("nosite", [{"URL": "not a url"}])

    asyncio.run(seed())
    app.state.services = services
    yield services
    del app.state.services


@pytest.fixture
def client(services):
    return TestClient(app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["checks"] == {"database": True, "cache": True}


def test_health_without_services_is_degraded():
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


def test_status(client):
    body = client.get("/status").json()
    assert body["cache"]["backend"] == "memory"
    assert body["upstream"]["name"] == "rank_query"


def test_timestamps_are_utc_aware(client):
    client.get("/page-metrics/news", params={"days": 7})
    body = client.get("/status").json()
    assert datetime.fromisoformat(body["timestamp"]).utcoffset() == timedelta(0)
    assert datetime.fromisoformat(body["upstream"]["last_request"]).utcoffset() == timedelta(0)
    health = client.get("/health").json()
    assert datetime.fromisoformat(health["timestamp"]).utcoffset() == timedelta(0)


def test_list_projects(client):
    response = client.get("/projects")
    assert response.status_code == 200
    ids = [p["id"] for p in response.json()["projects"]]
    assert sorted(ids) == ["broken", "news", "nosite"]


class TestPageMetrics:
    def test_returns_payload_with_cache_headers(self, client):
        response = client.get("/page-metrics/news", params={"days": 7})
        assert response.status_code == 200
        body = response.json()
        assert len(body["results"]) == 2
        assert body["meta"]["site"] == "sc-domain:example.com"
        assert response.headers["X-Cache-Key"].startswith("page-metrics:news:")
        assert int(response.headers["X-Cache-Duration"]) >= 0

    def test_unknown_project(self, client):
        assert client.get("/page-metrics/missing").status_code == 404

    def test_site_not_derivable(self, client):
        response = client.get("/page-metrics/nosite")
        assert response.status_code == 400
        assert "derive site" in response.json()["detail"]

    def test_upstream_failure(self, client):
        response = client.get("/page-metrics/broken")
        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["status"] == 500
        assert len(detail["body"]) <= 4000

    def test_invalid_days(self, client):
        assert client.get("/page-metrics/news", params={"days": 0}).status_code == 422

    def test_summary_route_is_not_a_project_id(self, client):
        response = client.get("/page-metrics/summary", params={"window": 1})
        assert response.status_code == 200
        assert "s-maxage" in response.headers["Cache-Control"]
        body = response.json()
        assert body["window_days"] == 1
        assert [r["id"] for r in body["results"]] == ["news"]
        assert body["results"][0]["current"]["clicks"] == 5
        assert body["results"][0]["delta"]["clicks"] == 2
        assert {e["id"] for e in body["errors"]} == {"broken", "nosite"}
        assert body["tsv"].startswith("Project\tSite\t")

    def test_summary_invalid_window(self, client):
        assert client.get("/page-metrics/summary", params={"window": 0}).status_code == 422


class TestRankings:
    def test_keywords(self, client):
        response = client.get("/rankings/news/keywords", params={"days": 7})
        assert response.status_code == 200
        body = response.json()
        assert len(body["results"]) == 2
        assert len(body["requested"]) == 3
        assert response.headers["X-Cache-Key"].startswith("keyword-ranks:news:")

    def test_overview(self, client):
        response = client.get("/rankings/news/overview", params={"days": 7, "top_n": 5})
        assert response.status_code == 200
        body = response.json()
        assert body["top_n"] == 5
        assert body["urls"][0]["best_current"] == 4
        assert body["totals"]["in_top_n"] == 1

    def test_overview_upstream_failure(self, client):
        assert client.get("/rankings/broken/overview").status_code == 502


class TestProjectWrites:
    def test_upsert_requires_secret(self, client):
        response = client.post("/projects/new", json={"rows": []})
        assert response.status_code == 401

    def test_upsert(self, client):
        response = client.post(
            "/projects/new",
            params={"secret": SECRET},
            json={"label": "New", "rows": [{"URL": "https://new.test/a"}]},
        )
        assert response.status_code == 200
        assert response.json()["project"]["row_count"] == 1
        assert "new" in [p["id"] for p in client.get("/projects").json()["projects"]]

    def test_delete(self, client):
        client.get("/page-metrics/news", params={"days": 7})
        response = client.delete("/projects/news", params={"secret": SECRET})
        assert response.status_code == 200
        assert response.json() == {"success": True, "id": "news"}
        assert client.delete("/projects/news", params={"secret": SECRET}).status_code == 404
        assert client.get("/page-metrics/news").status_code == 404

    def test_delete_wrong_secret(self, client):
        assert client.delete("/projects/news", params={"secret": "nope"}).status_code == 401


class TestCacheEndpoints:
    def test_refresh_requires_secret(self, client):
        assert client.post("/cache/refresh", json={"secret": "nope"}).status_code == 401

    def test_refresh_reports_failures_per_pair(self, client):
        response = client.post("/cache/refresh", json={"secret": SECRET, "days": [7]})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert {r["project_id"] for r in body["refreshed"]} == {"news"}
        assert {f["project_id"] for f in body["failed"]} == {"broken", "nosite"}

    def test_refresh_unknown_projects(self, client):
        response = client.post("/cache/refresh", json={"secret": SECRET, "project_ids": ["missing"]})
        assert response.status_code == 400

    def test_status(self, client):
        response = client.get("/cache/status", params={"secret": SECRET})
        assert response.status_code == 200
        body = response.json()
        assert body["backend"] == "memory"
        assert body["healthy"] is True
        assert body["upstream"]["name"] == "rank_query"

    def test_status_requires_secret(self, client):
        assert client.get("/cache/status").status_code == 401

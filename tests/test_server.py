"""Tests for the read-only query server."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest

from devpulse.config import DevpulseConfig
from devpulse.dates import format_timestamp, utc_now
from devpulse.github_client import GitHubClient
from devpulse.models import EventType
from devpulse.server import create_app
from devpulse.store import Store

from conftest import ORG, REPO, Seeder


def _offline_client() -> GitHubClient:
    return GitHubClient(token="test-token", config=DevpulseConfig())


@pytest.fixture
async def client(store: Store, seed: Seeder) -> AsyncIterator[httpx.AsyncClient]:
    seed.developer("alice", entity="ACME")
    seed.developer("bob", entity="GLOBEX")
    seed.events("alice", "2025-01-10", 3, type=EventType.PULL_REQUEST)
    seed.events("bob", "2025-01-12", 1, type=EventType.ISSUE)
    app = create_app(store, DevpulseConfig(), client_factory=_offline_client)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestData:
    async def test_min_date(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/min-date", params={"o": ORG})
        assert resp.status_code == 200
        assert resp.json() == {"min_date": "2025-01-10"}

    async def test_lookup(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/query", params={"v": "entity", "q": "AC"})
        assert resp.status_code == 200
        assert [item["value"] for item in resp.json()] == ["ACME"]

    async def test_lookup_invalid_kind(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/query", params={"v": "user"})
        assert resp.status_code == 400
        assert "look-up kind" in resp.json()["error"]

    async def test_developer_percentages(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/developer", params={"m": 120})
        assert resp.status_code == 200
        assert resp.json() == {"labels": ["alice", "bob"], "data": [75.0, 25.0]}

    async def test_entity_percentages_exclusion(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/entity", params={"m": 120, "x": "ACME"})
        assert resp.json() == {"labels": ["GLOBEX"], "data": [100.0]}

    async def test_months_out_of_range(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/insights/summary", params={"m": 0})
        assert resp.status_code == 400
        assert "error" in resp.json()

    async def test_search(self, client: httpx.AsyncClient) -> None:
        resp = await client.post(
            "/data/search", json={"org": ORG, "repo": REPO, "type": "issue"}
        )
        assert resp.status_code == 200
        events = resp.json()
        assert len(events) == 1
        assert events[0]["username"] == "bob"

    async def test_entity_developers(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/entity/developers", params={"e": "ACME"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["developer_count"] == 1
        assert body["developers"][0]["username"] == "alice"

    async def test_entity_not_found(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/entity/developers", params={"e": "NOPE"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Entity not found: NOPE"}


class TestInsights:
    async def test_summary_with_org_repo(self, client: httpx.AsyncClient) -> None:
        resp = await client.get(
            "/data/insights/summary", params={"r": f"{ORG}/{REPO}", "m": 120}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["events"] == 4
        assert body["bus_factor"] == 1
        assert body["entities"] == 2

    async def test_event_types(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/type", params={"m": 120})
        points = resp.json()
        assert points[0]["month"] == "2025-01"
        assert points[0]["pull_request"] == 3
        assert points[0]["issue"] == 1

    async def test_repo_meta_empty(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/data/insights/repo-meta")
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_cached_user_reputation(self, client: httpx.AsyncClient, store: Store) -> None:
        with store.transaction() as conn:
            conn.execute(
                "UPDATE developer SET reputation = 0.42, reputation_updated_at = ?,"
                " reputation_deep = 1 WHERE username = 'alice'",
                (format_timestamp(utc_now()),),
            )

        resp = await client.get("/data/insights/reputation/user", params={"u": "alice"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["reputation"] == 0.42
        assert body["cached"] is True

    async def test_reputation_distribution(
        self, client: httpx.AsyncClient, store: Store
    ) -> None:
        with store.transaction() as conn:
            conn.execute("UPDATE developer SET reputation = 0.9 WHERE username = 'alice'")
            conn.execute("UPDATE developer SET reputation = 0.2 WHERE username = 'bob'")

        resp = await client.get("/data/insights/reputation", params={"m": 120})

        assert [r["username"] for r in resp.json()] == ["bob", "alice"]

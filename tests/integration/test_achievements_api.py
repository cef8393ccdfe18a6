"""Achievement and statistics API integration tests."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from redis.exceptions import RedisError


async def _quest(client: AsyncClient, world, **extra) -> dict:
    body = {"title": "Feed the shelter", "experience_reward": 20, "city_id": world.city.id, **extra}
    response = await client.post("/api/v1/quests", json=body, headers={"X-User-Id": str(world.creator.id)})
    assert response.status_code == 201, response.text
    return response.json()


class TestAchievementCrud:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client: AsyncClient):
        response = await client.post("/api/v1/achievements", json={"title": "Helper", "rarity": "rare"})
        assert response.status_code == 201
        created = response.json()
        assert created["quest_id"] is None

        fetched = await client.get(f"/api/v1/achievements/{created['id']}")
        assert fetched.json()["title"] == "Helper"

    @pytest.mark.asyncio
    async def test_private_without_quest(self, client: AsyncClient):
        response = await client.post("/api/v1/achievements", json={"title": "Secret", "rarity": "private"})
        assert response.status_code == 400
        assert response.json()["detail"] == 'Rarity "private" requires quest_id'

    @pytest.mark.asyncio
    async def test_unknown_rarity(self, client: AsyncClient):
        response = await client.post("/api/v1/achievements", json={"title": "Odd", "rarity": "mythic"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_title(self, client: AsyncClient):
        await client.post("/api/v1/achievements", json={"title": "Helper"})
        response = await client.post("/api/v1/achievements", json={"title": "Helper"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_update_detaches_quest(self, client: AsyncClient, world):
        quest = await _quest(client, world)
        created = (await client.post(
            "/api/v1/achievements", json={"title": "Secret", "rarity": "private", "quest_id": quest["id"]},
        )).json()

        response = await client.patch(f"/api/v1/achievements/{created['id']}", json={"rarity": "epic"})
        assert response.status_code == 200
        assert response.json()["quest_id"] is None

    @pytest.mark.asyncio
    async def test_delete_then_missing(self, client: AsyncClient):
        created = (await client.post("/api/v1/achievements", json={"title": "Helper"})).json()
        assert (await client.delete(f"/api/v1/achievements/{created['id']}")).status_code == 200
        assert (await client.get(f"/api/v1/achievements/{created['id']}")).status_code == 404
        assert (await client.get("/api/v1/achievements")).json()["total"] == 0


class TestGrantsApi:
    @pytest.mark.asyncio
    async def test_assign_and_list(self, client: AsyncClient, world):
        created = (await client.post("/api/v1/achievements", json={"title": "Helper"})).json()
        url = f"/api/v1/achievements/{created['id']}/assign"

        response = await client.post(url, json={"user_id": world.player.id})
        assert response.status_code == 201
        assert response.json()["user_id"] == world.player.id

        again = await client.post(url, json={"user_id": world.player.id})
        assert again.status_code == 409

        mine = (await client.get(f"/api/v1/users/{world.player.id}/achievements")).json()
        assert mine["total"] == 1
        assert mine["achievements"][0]["achievement"]["title"] == "Helper"

    @pytest.mark.asyncio
    async def test_assign_unknown_user(self, client: AsyncClient):
        created = (await client.post("/api/v1/achievements", json={"title": "Helper"})).json()
        response = await client.post(f"/api/v1/achievements/{created['id']}/assign", json={"user_id": 999})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_completion_grants_inline_achievement(self, client: AsyncClient, world, sink):
        quest = await _quest(client, world, achievement={"title": "Shelter hero"})
        player = {"X-User-Id": str(world.player.id)}
        await client.post(f"/api/v1/quests/{quest['id']}/join", headers=player)
        await client.post(f"/api/v1/quests/{quest['id']}/complete", headers=player)

        mine = (await client.get(f"/api/v1/users/{world.player.id}/achievements")).json()
        assert [a["achievement"]["id"] for a in mine["achievements"]] == [quest["achievement_id"]]
        assert sink.emitted[-1][1]["achievement_granted"] == quest["achievement_id"]


class TestDanglingApi:
    @pytest.mark.asyncio
    async def test_reconcile_after_quest_delete(self, client: AsyncClient, world):
        quest = await _quest(client, world, achievement={"title": "Shelter hero"})
        assert (await client.get("/api/v1/achievements/dangling")).json()["total"] == 0

        await client.delete(f"/api/v1/quests/{quest['id']}")
        dangling = (await client.get("/api/v1/achievements/dangling")).json()
        assert [a["id"] for a in dangling["achievements"]] == [quest["achievement_id"]]

        reconciled = await client.post("/api/v1/achievements/dangling/reconcile")
        assert reconciled.json() == {"removed": [quest["achievement_id"]]}
        assert (await client.get("/api/v1/achievements/dangling")).json()["total"] == 0


class TestStatisticsApi:
    @pytest.mark.asyncio
    async def test_counts(self, client: AsyncClient, world):
        first = await _quest(client, world)
        second = await _quest(client, world, title="Plant trees")
        await client.post(f"/api/v1/quests/{second['id']}/archive")
        player = {"X-User-Id": str(world.player.id)}
        await client.post(f"/api/v1/quests/{first['id']}/join", headers=player)
        await client.post(f"/api/v1/quests/{first['id']}/complete", headers=player)

        response = await client.get("/api/v1/statistics")
        assert response.status_code == 200
        assert response.json() == {
            "users_count": 2,
            "total_quests": 2,
            "active_quests": 1,
            "archived_quests": 1,
            "completed_quests": 0,
            "participations_in_progress": 2,
            "participations_completed": 1,
        }

    @pytest.mark.asyncio
    async def test_served_from_cache(self, client: AsyncClient):
        cached = {
            "users_count": 7, "total_quests": 3, "active_quests": 3, "archived_quests": 0,
            "completed_quests": 0, "participations_in_progress": 4, "participations_completed": 1,
        }
        redis = AsyncMock()
        redis.get.return_value = json.dumps(cached)

        with patch("civic.statistics.router.get_redis_or_none", return_value=redis):
            response = await client.get("/api/v1/statistics")

        assert response.json() == cached
        redis.setex.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_miss_writes(self, client: AsyncClient):
        redis = AsyncMock()
        redis.get.return_value = None

        with patch("civic.statistics.router.get_redis_or_none", return_value=redis):
            response = await client.get("/api/v1/statistics")

        assert response.json()["total_quests"] == 0
        key, ttl, raw = redis.setex.await_args.args
        assert (key, ttl) == ("statistics:quests", 60)
        assert json.loads(raw) == response.json()

    @pytest.mark.asyncio
    async def test_cache_failure_falls_through(self, client: AsyncClient, world):
        redis = AsyncMock()
        redis.get.side_effect = RedisError("redis down")
        redis.setex.side_effect = RedisError("redis down")

        with patch("civic.statistics.router.get_redis_or_none", return_value=redis):
            response = await client.get("/api/v1/statistics")

        assert response.status_code == 200
        assert response.json()["users_count"] == 2

"""Quest API integration tests over the in-process stores."""

from __future__ import annotations

import json

import pytest
from httpx import AsyncClient


def _body(world, **overrides) -> dict:
    body = {
        "title": "Feed the shelter",
        "experience_reward": 50,
        "city_id": world.city.id,
        "category_ids": [world.food.id],
        "steps": [{"title": "S1", "requirement": {"current_value": 0, "target_value": 10}}],
    }
    body.update(overrides)
    return body


async def _create(client: AsyncClient, world, **overrides) -> dict:
    response = await client.post(
        "/api/v1/quests", json=_body(world, **overrides), headers={"X-User-Id": str(world.creator.id)},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestQuestCrud:
    """Test create, read, update, delete."""

    @pytest.mark.asyncio
    async def test_create_returns_view_and_emits(self, client: AsyncClient, world, sink, fake_session):
        quest = await _create(client, world, achievement={"title": "Shelter hero"})

        assert quest["owner"]["id"] == world.creator.id
        assert quest["city"]["name"] == "Kazan"
        assert quest["categories"] == [{"id": world.food.id, "name": "Food"}]
        assert quest["achievement"]["rarity"] == "private"
        assert quest["latitude"] == world.city.latitude
        assert sink.names == ["UserJoined", "QuestCreated"]
        fake_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_requires_actor(self, client: AsyncClient, world):
        response = await client.post("/api/v1/quests", json=_body(world))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_level_gate(self, client: AsyncClient, world, sink, fake_session):
        response = await client.post(
            "/api/v1/quests", json=_body(world), headers={"X-User-Id": str(world.player.id)},
        )
        assert response.status_code == 403
        assert "level 5" in response.json()["detail"]
        assert sink.emitted == []
        fake_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_validation(self, client: AsyncClient, world):
        response = await client.post(
            "/api/v1/quests",
            json=_body(world, experience_reward=-1),
            headers={"X-User-Id": str(world.creator.id)},
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    @pytest.mark.asyncio
    async def test_get_and_list(self, client: AsyncClient, world):
        quest = await _create(client, world)

        response = await client.get(f"/api/v1/quests/{quest['id']}")
        assert response.status_code == 200
        assert response.json()["title"] == "Feed the shelter"

        listing = (await client.get("/api/v1/quests", params={"category_id": world.food.id})).json()
        assert listing["total"] == 1
        assert (await client.get("/api/v1/quests", params={"status": "archived"})).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_get_missing(self, client: AsyncClient):
        response = await client.get("/api/v1/quests/404")
        assert response.status_code == 404
        assert response.json() == {"detail": "Quest with ID 404 not found"}

    @pytest.mark.asyncio
    async def test_patch_partial(self, client: AsyncClient, world):
        quest = await _create(client, world, gallery=["a.jpg"], description="Keep me")

        response = await client.patch(f"/api/v1/quests/{quest['id']}", json={"gallery": []})
        assert response.status_code == 200
        data = response.json()
        assert data["gallery"] == []
        assert data["description"] == "Keep me"

    @pytest.mark.asyncio
    async def test_patch_null_title_rejected(self, client: AsyncClient, world):
        quest = await _create(client, world)
        response = await client.patch(f"/api/v1/quests/{quest['id']}", json={"title": None})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, world):
        quest = await _create(client, world)
        response = await client.delete(f"/api/v1/quests/{quest['id']}")
        assert response.status_code == 200
        assert response.json() == {"id": quest["id"], "status": "deleted"}
        assert (await client.get(f"/api/v1/quests/{quest['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_archive_cycle(self, client: AsyncClient, world):
        quest = await _create(client, world)
        archived = await client.post(f"/api/v1/quests/{quest['id']}/archive")
        assert archived.json()["status"] == "archived"
        restored = await client.post(f"/api/v1/quests/{quest['id']}/unarchive")
        assert restored.json()["status"] == "active"


class TestParticipationApi:
    """Test join, leave, complete and requirement progress."""

    @pytest.mark.asyncio
    async def test_full_cycle(self, client: AsyncClient, world, sink, memory_db):
        quest = await _create(client, world)
        player = {"X-User-Id": str(world.player.id)}

        joined = await client.post(f"/api/v1/quests/{quest['id']}/join", headers=player)
        assert joined.status_code == 201
        assert joined.json()["status"] == "in_progress"

        again = await client.post(f"/api/v1/quests/{quest['id']}/join", headers=player)
        assert again.status_code == 409

        progress = await client.patch(
            f"/api/v1/quests/{quest['id']}/steps/0/requirement", json={"current_value": 10},
        )
        assert progress.status_code == 200
        assert progress.json()["steps"][0]["requirement"]["current_value"] == 10

        too_far = await client.patch(
            f"/api/v1/quests/{quest['id']}/steps/0/requirement", json={"current_value": 11},
        )
        assert too_far.status_code == 400

        completed = await client.post(f"/api/v1/quests/{quest['id']}/complete", headers=player)
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"
        assert memory_db.users[world.player.id].experience == 50

        twice = await client.post(f"/api/v1/quests/{quest['id']}/complete", headers=player)
        assert twice.status_code == 409
        assert memory_db.users[world.player.id].experience == 50

        assert sink.names == [
            "UserJoined", "QuestCreated", "UserJoined", "RequirementUpdated", "QuestCompleted",
        ]

    @pytest.mark.asyncio
    async def test_non_finite_values_rejected(self, client: AsyncClient, world):
        quest = await _create(client, world)
        json_headers = {"Content-Type": "application/json", "X-User-Id": str(world.creator.id)}
        # json.dumps emits bare NaN/Infinity tokens.
        for value in (float("nan"), float("inf")):
            response = await client.patch(
                f"/api/v1/quests/{quest['id']}/steps/0/requirement",
                content=json.dumps({"current_value": value}),
                headers=json_headers,
            )
            assert response.status_code == 422

        steps = [{"title": "S1", "requirement": {"current_value": 0, "target_value": float("nan")}}]
        created = await client.post(
            "/api/v1/quests", content=json.dumps(_body(world, steps=steps)), headers=json_headers,
        )
        assert created.status_code == 422

    @pytest.mark.asyncio
    async def test_complete_without_join(self, client: AsyncClient, world):
        quest = await _create(client, world)
        response = await client.post(
            f"/api/v1/quests/{quest['id']}/complete", headers={"X-User-Id": str(world.player.id)},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_leave(self, client: AsyncClient, world):
        quest = await _create(client, world)
        player = {"X-User-Id": str(world.player.id)}
        await client.post(f"/api/v1/quests/{quest['id']}/join", headers=player)

        left = await client.post(f"/api/v1/quests/{quest['id']}/leave", headers=player)
        assert left.status_code == 200
        assert left.json()["user_id"] == world.player.id

        missing = await client.post(f"/api/v1/quests/{quest['id']}/leave", headers=player)
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_user_quest_views(self, client: AsyncClient, world):
        first = await _create(client, world)
        second = await _create(client, world, title="Plant trees")
        await client.post(f"/api/v1/quests/{first['id']}/join", headers={"X-User-Id": str(world.player.id)})

        mine = (await client.get(f"/api/v1/users/{world.player.id}/quests")).json()
        assert [q["quest"]["id"] for q in mine["quests"]] == [first["id"]]

        available = (await client.get(f"/api/v1/users/{world.player.id}/quests/available")).json()
        assert [q["id"] for q in available["quests"]] == [second["id"]]

        assert (await client.get("/api/v1/users/999/quests")).status_code == 404


class TestQuestCategoriesApi:
    @pytest.mark.asyncio
    async def test_add_list_remove(self, client: AsyncClient, world):
        quest = await _create(client, world)
        url = f"/api/v1/quests/{quest['id']}/categories"

        added = await client.post(url, json={"category_id": world.animals.id})
        assert added.status_code == 201
        assert [c["id"] for c in added.json()] == [world.food.id, world.animals.id]

        duplicate = await client.post(url, json={"category_id": world.animals.id})
        assert duplicate.status_code == 409

        removed = await client.delete(f"{url}/{world.food.id}")
        assert removed.status_code == 204
        assert [c["id"] for c in (await client.get(url)).json()] == [world.animals.id]

        gone = await client.delete(f"{url}/{world.food.id}")
        assert gone.status_code == 404

"""Middleware tests: request ID, CORS, error handling."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_request_id_on_error_response(client: AsyncClient) -> None:
    response = await client.get("/api/v1/quests/404", headers={"X-Request-Id": "missing-quest"})
    assert response.status_code == 404
    assert response.headers["x-request-id"] == "missing-quest"


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for the admin panel origin."""
    response = await client.options(
        "/api/v1/quests",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "PATCH",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.json()["detail"] == "Not Found"
    assert response.headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_validation_error_shape(client: AsyncClient) -> None:
    response = await client.post("/api/v1/quests", json={}, headers={"X-User-Id": "1"})
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    assert {tuple(e["loc"]) for e in data["errors"]} >= {("body", "title"), ("body", "city_id")}


@pytest.mark.asyncio
async def test_actor_header_must_be_positive(client: AsyncClient) -> None:
    response = await client.post("/api/v1/quests/1/join", headers={"X-User-Id": "0"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_validation_error_with_nan_input(client: AsyncClient) -> None:
    response = await client.patch(
        "/api/v1/quests/1/steps/0/requirement",
        content='{"current_value": NaN}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 422
    inputs = {e.get("input") for e in response.json()["errors"]}
    assert "nan" in inputs

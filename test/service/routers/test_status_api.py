import pytest
from unittest.mock import AsyncMock

from storage.errors import StoreUnavailableError


@pytest.mark.asyncio
async def test_status_ok(client):
    response = await client.get("/status")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage": "ok", "active_comparisons": 0}


@pytest.mark.asyncio
async def test_status_degraded_when_storage_down(client, storage):
    storage.count_chat_sessions = AsyncMock(side_effect=StoreUnavailableError("connection refused"))

    response = await client.get("/status")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["storage"] == "unavailable"

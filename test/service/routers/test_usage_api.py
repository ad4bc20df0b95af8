import pytest

from auth.usage_tracking.models import UserTier

from conftest import create_user, login


class TestUsage:
    @pytest.mark.asyncio
    async def test_tiers_are_public(self, client):
        response = await client.get("/tiers")

        assert response.status_code == 200
        tiers = {t["tier"]: t for t in response.json()}
        assert tiers["tier1"]["price"] == "$0.00"
        assert tiers["tier1"]["conversations"] == "50"
        assert tiers["tier2"]["price"] == "$17.99"
        assert tiers["tier2"]["conversations"] == "Unlimited"

    @pytest.mark.asyncio
    async def test_fresh_user(self, client):
        await login(client)

        body = (await client.get("/usage")).json()

        assert body["tier"] == "tier1"
        assert body["used"] == 0
        assert body["quota"] == 50
        assert body["remaining"] == 50
        assert body["percentage"] == 0.0
        assert body["color"] == "green"
        assert body["allowed"] is True

    @pytest.mark.asyncio
    async def test_meter_color_follows_usage(self, client, storage):
        await create_user(storage, "alice", used=40)
        await login(client)

        body = (await client.get("/usage")).json()

        assert body["used"] == 40
        assert body["percentage"] == 80.0
        assert body["color"] == "orange"

    @pytest.mark.asyncio
    async def test_quota_reached(self, client, storage):
        await create_user(storage, "alice", used=50)
        await login(client)

        body = (await client.get("/usage")).json()

        assert body["allowed"] is False
        assert body["reason"] == "quota_exceeded"
        assert body["color"] == "red"


class TestSubscription:
    @pytest.mark.asyncio
    async def test_upgrade_then_cancel(self, client, storage):
        await login(client)

        response = await client.post("/tiers/upgrade", json={"tier": "tier2"})
        assert response.status_code == 200
        assert response.json()["current_tier"] == "tier2"

        usage = (await client.get("/usage")).json()
        assert usage["quota"] is None
        assert usage["conversations_limit"] == "Unlimited"

        response = await client.post("/subscription/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["expires_at"] is not None
        # Paid through the end of the period
        assert (await storage.get_user("alice")).current_tier == UserTier.PRO

    @pytest.mark.asyncio
    async def test_cancel_without_subscription(self, client):
        await login(client)

        response = await client.post("/subscription/cancel")

        assert response.status_code == 400
        assert response.json()["error_code"] == "no_subscription"

import pytest

from auth.usage_tracking.models import UserRole

from conftest import login


async def login_admin(client, storage):
    await login(client, "admin-token")
    await storage.set_user_role("admin", UserRole.SUPERADMIN)


class TestAdminAccess:
    @pytest.mark.asyncio
    async def test_member_is_forbidden(self, client):
        await login(client)

        response = await client.get("/admin/users")

        assert response.status_code == 403
        assert response.json()["error_code"] == "superadmin_required"

    @pytest.mark.asyncio
    async def test_role_is_read_from_store(self, client, storage):
        await login_admin(client, storage)
        assert (await client.get("/admin/users")).status_code == 200

        await storage.set_user_role("admin", UserRole.MEMBER)
        assert (await client.get("/admin/users")).status_code == 403


class TestAdminUsers:
    @pytest.mark.asyncio
    async def test_manage_user(self, client, storage):
        await login(client, "bob-token")
        client.cookies.clear()
        await login_admin(client, storage)

        users = {u["id"] for u in (await client.get("/admin/users")).json()}
        assert users == {"bob", "admin"}

        response = await client.put("/admin/users/bob/tier", json={"tier": "tier2"})
        assert response.json()["current_tier"] == "tier2"

        await storage.increment_usage("bob")
        response = await client.post("/admin/users/bob/reset-usage")
        assert response.json()["monthly_conversation_count"] == 0

        activity = (await client.get("/admin/activity", params={"limit": 10})).json()["activities"]
        assert [a["action"] for a in activity] == ["reset_usage", "set_tier"]

        assert (await client.delete("/admin/users/bob")).status_code == 200
        assert (await client.get("/admin/stats")).json()["total_users"] == 1

    @pytest.mark.asyncio
    async def test_cannot_delete_self(self, client, storage):
        await login_admin(client, storage)

        response = await client.delete("/admin/users/admin")

        assert response.status_code == 400
        assert response.json()["error_code"] == "admin_action_not_allowed"

    @pytest.mark.asyncio
    async def test_delete_missing_user(self, client, storage):
        await login_admin(client, storage)

        assert (await client.delete("/admin/users/ghost")).status_code == 404


class TestAdminGlobalKeys:
    @pytest.mark.asyncio
    async def test_lifecycle(self, client, storage):
        await login_admin(client, storage)

        response = await client.post("/admin/global-keys", json={
            "provider": "openai", "api_key": "sk-global-1234567890", "usage_limit": 100,
        })
        assert response.status_code == 201
        key = response.json()
        assert key["masked_key"] != "sk-global-1234567890"
        assert key["usage_limit"] == 100

        key = (await client.patch(f"/admin/global-keys/{key['id']}", json={"usage_limit": 0})).json()
        assert key["usage_limit"] is None

        key = (await client.post(f"/admin/global-keys/{key['id']}/toggle")).json()
        assert key["is_active"] is False

        assert len((await client.get("/admin/global-keys")).json()) == 1
        assert (await client.delete(f"/admin/global-keys/{key['id']}")).status_code == 200
        assert (await client.get("/admin/global-keys")).json() == []

    @pytest.mark.asyncio
    async def test_global_key_serves_users_without_keys(self, client, storage):
        await login_admin(client, storage)
        await client.post("/admin/global-keys", json={"provider": "openai", "api_key": "sk-global-1234567890"})
        session_id = (await client.post("/chat-sessions", json={})).json()["id"]

        turn = (await client.post("/compare", json={
            "session_id": session_id, "prompt": "Hi", "providers": ["openai"],
        })).json()

        assert turn["responses"][0]["state"] == "success"
        assert turn["responses"][0]["used_global_key"] is True
        assert (await client.get("/admin/global-keys")).json()[0]["current_usage"] == 1


class TestAdminSettings:
    @pytest.mark.asyncio
    async def test_update_setting(self, client, storage):
        await login_admin(client, storage)

        response = await client.put("/admin/settings", json={"key": "get_started_video_url", "value": "https://example.com/v"})

        assert response.status_code == 200
        assert (await client.get("/admin/settings")).json()["get_started_video_url"] == "https://example.com/v"

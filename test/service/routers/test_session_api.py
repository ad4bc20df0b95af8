import pytest

from conftest import login


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.post("/create-session")
        assert response.status_code == 401
        assert response.json()["error_code"] == "missing_token"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.post("/create-session", headers={"Authorization": "Bearer not-a-real-token"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_creates_profile_and_sets_cookie(self, client, storage):
        response = await login(client)

        body = response.json()
        assert body["user_id"] == "alice"
        assert body["role"] == "member"
        assert body["tier"] == "tier1"
        assert "session" in response.cookies
        assert (await storage.get_user("alice")).email == "alice@example.com"


class TestMe:
    @pytest.mark.asyncio
    async def test_requires_session(self, client):
        response = await client.get("/me")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_returns_profile(self, client):
        await login(client)

        response = await client.get("/me")

        assert response.status_code == 200
        assert response.json()["id"] == "alice"
        assert response.json()["monthly_conversation_count"] == 0

    @pytest.mark.asyncio
    async def test_delete_session_logs_out(self, client):
        await login(client)

        response = await client.post("/delete-session")
        assert response.status_code == 200

        client.cookies.clear()
        assert (await client.get("/me")).status_code == 403

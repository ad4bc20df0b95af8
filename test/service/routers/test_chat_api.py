import json

import pytest

from conftest import create_user, login


async def start_chat(client) -> str:
    response = await client.post("/chat-sessions", json={})
    assert response.status_code == 201
    return response.json()["id"]


def sse_events(body: str) -> list:
    events = []
    for block in body.split("\n\n"):
        if not block.startswith("data: "):
            continue
        data = block[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


@pytest.fixture
def answers():
    return {"openai": "Paris", "gemini": "Paris, France", "deepseek": RuntimeError("upstream 500")}


class TestChatSessions:
    @pytest.mark.asyncio
    async def test_create_list_rename_delete(self, client):
        await login(client)
        session_id = await start_chat(client)

        sessions = (await client.get("/chat-sessions")).json()
        assert [s["id"] for s in sessions] == [session_id]
        assert sessions[0]["title"] == "New Chat"

        renamed = await client.patch(f"/chat-sessions/{session_id}", json={"title": "Geography"})
        assert renamed.json()["title"] == "Geography"

        assert (await client.delete(f"/chat-sessions/{session_id}")).status_code == 200
        assert (await client.get("/chat-sessions")).json() == []

    @pytest.mark.asyncio
    async def test_other_users_session_is_not_found(self, client, storage):
        await login(client, "bob-token")
        session_id = await start_chat(client)

        client.cookies.clear()
        await login(client)

        response = await client.get(f"/chat-sessions/{session_id}/turns")
        assert response.status_code == 404
        assert response.json()["error_code"] == "not_found"


class TestCompare:
    @pytest.mark.asyncio
    async def test_compare_returns_every_response(self, client, storage):
        await create_user(storage, "alice")
        await login(client)
        session_id = await start_chat(client)

        response = await client.post("/compare", json={
            "session_id": session_id,
            "prompt": "What is the capital city of France?",
            "providers": ["openai", "gemini", "deepseek"],
        })

        assert response.status_code == 200
        turn = response.json()
        assert turn["state"] == "complete"
        states = {r["provider"]: r["state"] for r in turn["responses"]}
        assert states == {"openai": "success", "gemini": "success", "deepseek": "error"}
        assert (await storage.get_user("alice")).monthly_conversation_count == 1

        session = (await client.get("/chat-sessions")).json()[0]
        assert session["title"] == "What is the capital city of Fr..."

    @pytest.mark.asyncio
    async def test_select_response(self, client, storage):
        await create_user(storage, "alice")
        await login(client)
        session_id = await start_chat(client)
        turn = (await client.post("/compare", json={
            "session_id": session_id, "prompt": "Capital?", "providers": ["openai", "gemini"],
        })).json()

        response = await client.post(f"/turns/{turn['id']}/select", json={"provider": "gemini"})

        assert response.status_code == 200
        assert response.json()["selected_provider"] == "gemini"
        assert response.json()["state"] == "resolved"

        messages = (await client.get(f"/chat-sessions/{session_id}/messages")).json()
        assert [(m["role"], m["content"]) for m in messages] == [("user", "Capital?"), ("assistant", "Paris, France")]

    @pytest.mark.asyncio
    async def test_cannot_select_failed_response(self, client, storage):
        await create_user(storage, "alice")
        await login(client)
        session_id = await start_chat(client)
        turn = (await client.post("/compare", json={
            "session_id": session_id, "prompt": "Capital?", "providers": ["openai", "deepseek"],
        })).json()

        response = await client.post(f"/turns/{turn['id']}/select", json={"provider": "deepseek"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_selection"

    @pytest.mark.asyncio
    async def test_foreign_turn_is_not_found(self, client, storage):
        await create_user(storage, "bob")
        await login(client, "bob-token")
        session_id = await start_chat(client)
        turn = (await client.post("/compare", json={
            "session_id": session_id, "prompt": "Capital?", "providers": ["openai"],
        })).json()

        client.cookies.clear()
        await login(client)

        assert (await client.get(f"/turns/{turn['id']}")).status_code == 404
        assert (await client.post(f"/turns/{turn['id']}/select", json={"provider": "openai"})).status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client):
        await login(client)
        session_id = await start_chat(client)

        response = await client.post("/compare", json={
            "session_id": session_id, "prompt": "Hi", "providers": ["clippy"],
        })

        assert response.status_code == 400
        assert response.json()["error_code"] == "unknown_provider"

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, client, storage):
        await create_user(storage, "alice", used=50)
        await login(client)
        session_id = await start_chat(client)

        response = await client.post("/compare", json={
            "session_id": session_id, "prompt": "Hi", "providers": ["openai"],
        })

        assert response.status_code == 429
        body = response.json()
        assert body["error_code"] == "quota_exceeded"
        assert body["used"] == 50
        assert body["quota"] == 50
        assert body["upgrade"]["formatted_prices"]["tier2"] == "$17.99"
        assert (await storage.get_user("alice")).monthly_conversation_count == 50
        assert await storage.count_turns() == 0

    @pytest.mark.asyncio
    async def test_unconfigured_provider_settles_as_error(self, client):
        await login(client)
        session_id = await start_chat(client)

        turn = (await client.post("/compare", json={
            "session_id": session_id, "prompt": "Hi", "providers": ["openai"],
        })).json()

        assert turn["responses"][0]["state"] == "error"
        assert turn["responses"][0]["error_code"] == "provider_not_configured"


class TestCompareStream:
    @pytest.mark.asyncio
    async def test_stream_events(self, client, storage):
        await create_user(storage, "alice")
        await login(client)
        session_id = await start_chat(client)

        response = await client.post("/compare/stream", json={
            "session_id": session_id, "prompt": "Capital?", "providers": ["openai", "deepseek"],
        })

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert events[0]["type"] == "comparison_start"
        assert [p["provider"] for p in events[0]["providers"]] == ["openai", "deepseek"]
        settled = {e["response"]["provider"]: e["response"]["state"] for e in events if e.get("type") == "provider_response"}
        assert settled == {"openai": "success", "deepseek": "error"}
        assert events[-2]["type"] == "comparison_complete"
        assert (events[-2]["successful"], events[-2]["failed"]) == (1, 1)
        assert events[-1] == "[DONE]"

        turns = (await client.get(f"/chat-sessions/{session_id}/turns")).json()
        assert turns[0]["id"] == response.headers["X-Turn-ID"]

    @pytest.mark.asyncio
    async def test_quota_error_before_stream(self, client, storage):
        await create_user(storage, "alice", used=50)
        await login(client)
        session_id = await start_chat(client)

        response = await client.post("/compare/stream", json={
            "session_id": session_id, "prompt": "Hi", "providers": ["openai"],
        })

        assert response.status_code == 429
        assert response.json()["error_code"] == "quota_exceeded"


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_without_running_comparison(self, client):
        await login(client)
        session_id = await start_chat(client)

        response = await client.post(f"/compare/{session_id}/stop")

        assert response.status_code == 200
        assert response.json()["status"] == "not_running"

    @pytest.mark.asyncio
    async def test_stop_running_comparison(self, client, services):
        await login(client)
        session_id = await start_chat(client)
        token = await services.cancellation_manager.issue_token(session_id)

        response = await client.post(f"/compare/{session_id}/stop")

        assert response.json()["status"] == "cancellation_requested"
        assert token.cancelled

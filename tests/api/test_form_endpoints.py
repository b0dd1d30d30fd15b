"""
Tests for the /api/form endpoints.
"""
import pytest

from tests.fixtures import OTHER_USER_ID, TEST_USER_ID, FormCacheFactory, make_completion
from walios.services.form_assistant import WELCOME_MESSAGE


async def _create_session(client):
    response = await client.post(
        "/api/form/ai-assistant",
        json={"userId": TEST_USER_ID, "action": "create_session", "formTitle": "SF-424"},
    )
    assert response.status_code == 200
    return response.json()["sessionId"]


class TestFormAssistantEndpoint:
    """Tests for POST /api/form/ai-assistant."""

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, client, fake_provider):
        fake_provider.generate_completion.return_value = make_completion("An EIN is your federal tax ID.")
        session_id = await _create_session(client)

        sent = await client.post(
            "/api/form/ai-assistant",
            json={"userId": TEST_USER_ID, "action": "send_message", "sessionId": session_id, "message": "What is an EIN?"},
        )
        messages = await client.post(
            "/api/form/ai-assistant",
            json={"userId": TEST_USER_ID, "action": "get_messages", "sessionId": session_id},
        )

        assert sent.status_code == 200
        assert sent.json()["message"]["content"] == "An EIN is your federal tax ID."
        contents = [m["content"] for m in messages.json()["messages"]]
        assert contents[0] == WELCOME_MESSAGE
        assert len(contents) == 3

    @pytest.mark.asyncio
    async def test_get_session(self, client):
        session_id = await _create_session(client)

        response = await client.post(
            "/api/form/ai-assistant",
            json={"userId": TEST_USER_ID, "action": "get_session", "sessionId": session_id},
        )

        assert response.json()["session"]["form_title"] == "SF-424"

    @pytest.mark.asyncio
    async def test_other_users_session(self, client):
        session_id = await _create_session(client)

        response = await client.post(
            "/api/form/ai-assistant",
            json={"userId": OTHER_USER_ID, "action": "get_messages", "sessionId": session_id},
        )

        assert response.status_code == 404
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_generate_field_content(self, client, fake_provider):
        fake_provider.generate_completion.return_value = make_completion("Riverbend serves rural Ohio.")
        session_id = await _create_session(client)

        response = await client.post(
            "/api/form/ai-assistant",
            json={
                "userId": TEST_USER_ID,
                "action": "generate_field_content",
                "sessionId": session_id,
                "fieldContext": "Organizational Background",
            },
        )

        assert response.json()["generatedText"] == "Riverbend serves rural Ohio."

    @pytest.mark.asyncio
    async def test_generation_provider_failure(self, client, fake_provider):
        session_id = await _create_session(client)
        fake_provider.generate_completion.side_effect = RuntimeError("provider down")

        response = await client.post(
            "/api/form/ai-assistant",
            json={
                "userId": TEST_USER_ID,
                "action": "generate_field_content",
                "sessionId": session_id,
                "fieldContext": "Budget",
            },
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Form assistant failed: provider down"

    @pytest.mark.asyncio
    async def test_invalid_action(self, client):
        response = await client.post("/api/form/ai-assistant", json={"userId": TEST_USER_ID, "action": "dance"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}

    @pytest.mark.asyncio
    async def test_user_id_required(self, client):
        response = await client.post("/api/form/ai-assistant", json={"action": "create_session"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields: userId"


class TestFormCacheEndpoint:
    """Tests for POST /api/form/cache."""

    @pytest.mark.asyncio
    async def test_cache_miss(self, client):
        response = await client.post(
            "/api/form/cache", json={"userId": TEST_USER_ID, "action": "get_cache", "fileHash": "missing"}
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Cached form analysis not found"}

    @pytest.mark.asyncio
    async def test_cache_hit(self, client, async_session):
        async_session.add(FormCacheFactory.create())
        await async_session.commit()

        response = await client.post(
            "/api/form/cache", json={"userId": TEST_USER_ID, "action": "get_cache", "fileHash": "abc123"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["fromCache"] is True
        assert body["usageCount"] == 2

    @pytest.mark.asyncio
    async def test_store_then_duplicate(self, client):
        payload = {
            "userId": TEST_USER_ID,
            "action": "store_cache",
            "fileHash": "f00d",
            "fileName": "budget.pdf",
            "analysisResult": {"formAnalysis": {}},
        }

        first = await client.post("/api/form/cache", json=payload)
        second = await client.post("/api/form/cache", json=payload)

        assert first.status_code == 200
        assert second.json()["message"] == "Already cached"
        assert second.json()["id"] == first.json()["id"]

    @pytest.mark.asyncio
    async def test_store_missing_fields(self, client):
        response = await client.post("/api/form/cache", json={"userId": TEST_USER_ID, "fileHash": "f00d"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields: fileHash, fileName, analysisResult"

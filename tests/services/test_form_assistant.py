"""
Tests for form assistant sessions.
"""
import uuid

import pytest

from tests.fixtures import OTHER_USER_ID, TEST_USER_ID, make_completion
from walios.core.exceptions import NotFoundError, ValidationError
from walios.services.form_assistant import (
    FALLBACK_REPLY,
    WELCOME_MESSAGE,
    FormAssistantService,
    extract_field_suggestions,
    extract_generated_text,
)


class TestReplyParsing:
    def test_extract_generated_text(self):
        content = "Here is a draft for you:\n\nOur clinic serves 2,500 patients.\n\nLet me know if you need edits."
        assert extract_generated_text(content) == "Our clinic serves 2,500 patients."

    def test_no_generated_text(self):
        assert extract_generated_text("The EIN is a nine digit number.") is None

    def test_field_suggestions(self):
        assert extract_field_suggestions("My suggestion: be specific.", "budget") == {
            "budget": "My suggestion: be specific."
        }
        assert extract_field_suggestions("My suggestion: be specific.", None) is None


class TestFormAssistantService:
    """Tests for FormAssistantService."""

    @pytest.mark.asyncio
    async def test_create_session_posts_welcome(self, async_session, fake_provider):
        service = FormAssistantService(fake_provider)

        created = await service.create_session(async_session, TEST_USER_ID, form_title="SF-424")

        assert created["title"] == "SF-424"
        messages = await service.get_messages(async_session, TEST_USER_ID, uuid.UUID(created["sessionId"]))
        assert len(messages) == 1
        assert messages[0]["content"] == WELCOME_MESSAGE
        assert messages[0]["message_type"] == "welcome"

    @pytest.mark.asyncio
    async def test_default_title(self, async_session, fake_provider):
        created = await FormAssistantService(fake_provider).create_session(async_session, TEST_USER_ID)
        assert created["title"].startswith("Form Assistant - ")

    @pytest.mark.asyncio
    async def test_send_message(self, async_session, fake_provider):
        fake_provider.generate_completion.return_value = make_completion(
            "Here is a suggestion for your budget:\n\nRequest $150,000 over 12 months."
        )
        service = FormAssistantService(fake_provider)
        created = await service.create_session(async_session, TEST_USER_ID)
        session_id = uuid.UUID(created["sessionId"])

        reply = await service.send_message(
            async_session,
            TEST_USER_ID,
            session_id,
            "How much should I request?",
            field_context="budget",
            user_profile={"organization_name": "Riverbend"},
        )

        assert reply["generatedText"] == "Request $150,000 over 12 months."
        assert reply["fieldSuggestions"] == {"budget": reply["content"]}
        assert reply["provider"] == "openai"

        task, messages = fake_provider.generate_completion.call_args.args
        assert task == "form-assistant"
        assert "Organization: Riverbend" in messages[0]["content"]
        assert messages[1] == {"role": "assistant", "content": WELCOME_MESSAGE}
        assert messages[-1] == {"role": "user", "content": "How much should I request?"}

        stored = await service.get_messages(async_session, TEST_USER_ID, session_id)
        assert len(stored) == 3

    @pytest.mark.asyncio
    async def test_send_message_provider_failure(self, async_session, fake_provider):
        fake_provider.generate_completion.side_effect = RuntimeError("provider down")
        service = FormAssistantService(fake_provider)
        created = await service.create_session(async_session, TEST_USER_ID)

        reply = await service.send_message(
            async_session, TEST_USER_ID, uuid.UUID(created["sessionId"]), "What is a UEI?"
        )

        assert reply["content"] == FALLBACK_REPLY
        assert reply["provider"] is None

    @pytest.mark.asyncio
    async def test_send_message_requires_text(self, async_session, fake_provider):
        service = FormAssistantService(fake_provider)
        created = await service.create_session(async_session, TEST_USER_ID)

        with pytest.raises(ValidationError):
            await service.send_message(async_session, TEST_USER_ID, uuid.UUID(created["sessionId"]), "")

    @pytest.mark.asyncio
    async def test_other_users_session_is_not_found(self, async_session, fake_provider):
        service = FormAssistantService(fake_provider)
        created = await service.create_session(async_session, TEST_USER_ID)

        with pytest.raises(NotFoundError):
            await service.send_message(async_session, OTHER_USER_ID, uuid.UUID(created["sessionId"]), "Hello")
        with pytest.raises(NotFoundError):
            await service.get_session(async_session, OTHER_USER_ID, uuid.UUID(created["sessionId"]))

    @pytest.mark.asyncio
    async def test_missing_session_id(self, async_session, fake_provider):
        with pytest.raises(NotFoundError):
            await FormAssistantService(fake_provider).get_messages(async_session, TEST_USER_ID, None)

    @pytest.mark.asyncio
    async def test_generate_field_content(self, async_session, fake_provider):
        fake_provider.generate_completion.return_value = make_completion("Riverbend serves 2,500 rural patients.")
        service = FormAssistantService(fake_provider)
        created = await service.create_session(async_session, TEST_USER_ID)

        result = await service.generate_field_content(
            async_session,
            TEST_USER_ID,
            uuid.UUID(created["sessionId"]),
            "Statement of Need",
            form_data={"project_type": "health"},
        )

        assert result["generatedText"] == "Riverbend serves 2,500 rural patients."
        assert result["content"].startswith('Generated content for "Statement of Need"')
        assert fake_provider.generate_completion.call_args.kwargs["temperature"] == 0.7
        assert "Project type: health" in fake_provider.generate_completion.call_args.args[1][0]["content"]

    @pytest.mark.asyncio
    async def test_generate_requires_field(self, async_session, fake_provider):
        with pytest.raises(ValidationError, match="Field context"):
            await FormAssistantService(fake_provider).generate_field_content(
                async_session, TEST_USER_ID, uuid.uuid4(), None
            )

# =============================================================================
# Unit Tests — LLM Providers (speech path)
# =============================================================================
#
# The SDK clients are replaced after construction, so nothing here
# touches the network.
# =============================================================================

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.errors import ValidationError
from app.services.llm import (
    AnthropicProvider,
    ChatMessage,
    ChatRequest,
    OpenAICompatibleProvider,
)


def _run(coro):
    return asyncio.run(coro)


def _speech_request(**overrides) -> ChatRequest:
    fields = dict(
        model_id="openai/tts-1",
        messages=(ChatMessage(role="user", content="Revenue grew 14%."),),
        response_format="audio",
        task_type="audio",
        voice="nova",
    )
    fields.update(overrides)
    return ChatRequest(**fields)


class TestOpenAICompatibleSpeech:
    def test_speech_request(self):
        provider = OpenAICompatibleProvider(api_key="test-key")
        sdk = MagicMock()
        sdk.audio.speech.create = AsyncMock(return_value=MagicMock(content=b"ID3"))
        provider._client = sdk

        response = _run(provider.complete(_speech_request()))

        assert response.audio == b"ID3"
        assert response.model == "openai/tts-1"
        # Speech is priced per character
        assert response.input_tokens == len("Revenue grew 14%.")
        assert response.output_tokens == 0
        sdk.audio.speech.create.assert_awaited_once_with(
            model="openai/tts-1", voice="nova", input="Revenue grew 14%."
        )
        sdk.chat.completions.create.assert_not_called()

    def test_default_voice(self):
        provider = OpenAICompatibleProvider(api_key="test-key")
        sdk = MagicMock()
        sdk.audio.speech.create = AsyncMock(return_value=MagicMock(content=b"ID3"))
        provider._client = sdk

        _run(provider.complete(_speech_request(voice=None)))

        assert sdk.audio.speech.create.await_args.kwargs["voice"] == "alloy"


class TestAnthropicSpeech:
    def test_audio_rejected(self):
        provider = AnthropicProvider(api_key="test-key")
        provider._client = MagicMock()
        with pytest.raises(ValidationError):
            _run(provider.complete(_speech_request(model_id="claude-sonnet-4-6")))
        provider._client.messages.create.assert_not_called()

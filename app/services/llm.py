# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable Model Backend
# =============================================================================
#
# Provides a common interface for chat completions over documents, with
# concrete implementations for Anthropic (Claude) and OpenAI-compatible
# APIs (OpenRouter by default, which fronts Grok, Gemini and Nemotron).
#
# Requests are provider-neutral: a ChatRequest carries messages whose
# attachments are raw bytes plus a media type. Each provider translates
# them into its own content blocks:
#
#                  image/*              application/pdf       text/*
#   Anthropic      image block          document block        inlined text
#   OpenAI-compat  image_url data URI   file data URI         inlined text
#
# Audio requests (response_format="audio") go to the OpenAI-compatible
# /audio/speech endpoint. Anthropic has no speech synthesis and rejects
# them with a ValidationError.
#
# Otherwise providers raise the SDK's own exceptions. Classification into
# the pipeline's error taxonomy happens one level up, in ResilientClient.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider — Any OpenAI-compatible API
#   └── create_provider()        — Factory, reads provider type from settings
# =============================================================================

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from app.config import Settings
from app.models.report import SourceDocument
from app.services.errors import ValidationError

logger = logging.getLogger(__name__)

TEXT_MEDIA_TYPES = {"text/plain", "text/csv"}


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatMessage:
    role: str              # "system", "user" or "assistant"
    content: str
    attachments: tuple[SourceDocument, ...] = ()


@dataclass(frozen=True)
class ChatRequest:
    """
    Provider-neutral completion request.

    response_format is "text", "structured" or "audio". "structured" asks
    the provider for a JSON object where the API supports it. "audio"
    synthesizes the last user message as speech in `voice`.
    """

    model_id: str
    messages: tuple[ChatMessage, ...]
    temperature: float = 0.2
    max_output_tokens: int = 16000
    response_format: str = "text"
    task_type: str = "generation"
    voice: str | None = None


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier reported by the API
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response
    audio: bytes | None = None  # Synthesized speech for audio requests


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Structural interface every provider implements."""

    async def complete(self, request: ChatRequest) -> LLMResponse:
        """Run one completion. Raises the SDK's exceptions on failure."""
        ...

    async def list_models(self) -> list[str]:
        """Model ids visible to the configured credential."""
        ...


def _decode_text(attachment: SourceDocument) -> str:
    text = attachment.data.decode("utf-8", errors="replace")
    return f"--- {attachment.name} ({attachment.media_type}) ---\n{text}"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(self, api_key: str, timeout: float | None = None) -> None:
        from anthropic import AsyncAnthropic

        if not api_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )
        # SDK-level retries are disabled; ResilientClient owns retry policy
        self._client = AsyncAnthropic(api_key=api_key, max_retries=0, timeout=timeout)
        logger.info("Initialized AnthropicProvider")

    @staticmethod
    def _content_blocks(message: ChatMessage) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for attachment in message.attachments:
            if attachment.media_type in TEXT_MEDIA_TYPES:
                blocks.append({"type": "text", "text": _decode_text(attachment)})
            elif attachment.media_type == "application/pdf":
                blocks.append({
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": "application/pdf",
                        "data": _b64(attachment.data),
                    },
                })
            else:
                blocks.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": attachment.media_type,
                        "data": _b64(attachment.data),
                    },
                })
        blocks.append({"type": "text", "text": message.content})
        return blocks

    async def complete(self, request: ChatRequest) -> LLMResponse:
        """Generate a completion using Claude."""
        if request.response_format == "audio":
            raise ValidationError("Anthropic provider has no speech synthesis")

        system_parts = [m.content for m in request.messages if m.role == "system"]
        messages = [
            {"role": m.role, "content": self._content_blocks(m)}
            for m in request.messages
            if m.role != "system"
        ]

        kwargs: dict = {
            "model": request.model_id,
            "messages": messages,
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        response = await self._client.messages.create(**kwargs)

        content = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def list_models(self) -> list[str]:
        return [model.id async for model in self._client.models.list()]


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (OpenRouter, OpenAI, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI chat completions API.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://openrouter.ai/api/v1
        LLM_API_KEY=your-key
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        if not api_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": api_key, "max_retries": 0}
        if base_url:
            client_kwargs["base_url"] = base_url
        if timeout is not None:
            client_kwargs["timeout"] = timeout

        self._client = AsyncOpenAI(**client_kwargs)
        logger.info(
            "Initialized OpenAICompatibleProvider (base_url=%s)",
            base_url or "https://api.openai.com/v1",
        )

    @staticmethod
    def _content_parts(message: ChatMessage) -> str | list[dict[str, Any]]:
        if not message.attachments:
            return message.content

        parts: list[dict[str, Any]] = [{"type": "text", "text": message.content}]
        for attachment in message.attachments:
            data_uri = f"data:{attachment.media_type};base64,{_b64(attachment.data)}"
            if attachment.media_type in TEXT_MEDIA_TYPES:
                parts.append({"type": "text", "text": _decode_text(attachment)})
            elif attachment.media_type == "application/pdf":
                parts.append({
                    "type": "file",
                    "file": {"filename": attachment.name, "file_data": data_uri},
                })
            else:
                parts.append({"type": "image_url", "image_url": {"url": data_uri}})
        return parts

    async def complete(self, request: ChatRequest) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        if request.response_format == "audio":
            return await self._speech(request)

        kwargs: dict = {
            "model": request.model_id,
            "messages": [
                {"role": m.role, "content": self._content_parts(m)}
                for m in request.messages
            ],
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }
        if request.response_format == "structured":
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**kwargs)

        content = response.choices[0].message.content or ""

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or request.model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def _speech(self, request: ChatRequest) -> LLMResponse:
        """
        Synthesize the last user message via the /audio/speech endpoint.

        Speech models are priced per input character, so the character
        count is reported as input tokens.
        """
        text = next(
            (m.content for m in reversed(request.messages) if m.role == "user"), ""
        )
        response = await self._client.audio.speech.create(
            model=request.model_id,
            voice=request.voice or "alloy",
            input=text,
        )
        return LLMResponse(
            content="",
            model=request.model_id,
            input_tokens=len(text),
            output_tokens=0,
            audio=response.content,
        )

    async def list_models(self) -> list[str]:
        return [model.id async for model in self._client.models.list()]


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def create_provider(
    settings: Settings,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Build the configured provider.

    Reads `llm_provider` from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider (OpenRouter, OpenAI, ...)

    Raises:
        ValueError: Unknown provider type or missing API key.
    """
    timeout = settings.request_timeout_seconds
    if settings.llm_provider == "anthropic":
        return AnthropicProvider(
            api_key=settings.llm_api_key or settings.anthropic_api_key,
            timeout=timeout,
        )
    if settings.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider(
            api_key=(
                settings.llm_api_key
                or settings.openrouter_api_key
                or settings.openai_api_key
            ),
            base_url=settings.llm_base_url,
            timeout=timeout,
        )
    raise ValueError(
        f"Unknown LLM provider '{settings.llm_provider}'. "
        "Supported types: ['anthropic', 'openai_compatible']"
    )

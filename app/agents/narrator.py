# =============================================================================
# Narrator Agent — Spoken Summary of a Finished Report
# =============================================================================
#
# Turns a report's executive summary into speech through the same
# ResilientClient as every other model call (task_type="audio"), so the
# speech call is cached, retried, priced and counted in usage like a
# completion.
#
# The speech model is either fixed by configuration or, when left empty,
# chosen by the selection policy among the catalog's audio models.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.services.client import ChatResponse, ResilientClient
from app.services.errors import SchemaError, ValidationError
from app.services.llm import ChatMessage, ChatRequest
from app.services.pricing import ModelRequirements

logger = logging.getLogger(__name__)

# Speech endpoints cap the input length
MAX_SPEECH_CHARS = 4096

SPEECH_PROMPT = "Say in a clear, professional tone: {summary}"


@dataclass
class AudioSummary:
    audio: bytes
    media_type: str
    response: ChatResponse


class AudioSummarizer:
    """
    Synthesizes a spoken summary.

    Args:
        client: Shared resilient client.
        model_id: Fixed speech model id, or "" to use the selection policy.
        voice: Voice name passed to the speech endpoint.
        priority: Selection priority when model_id is empty.
    """

    def __init__(
        self,
        client: ResilientClient,
        model_id: str = "",
        voice: str = "alloy",
        priority: str = "quality",
    ) -> None:
        self.client = client
        self.model_id = model_id
        self.voice = voice
        self.priority = priority

    def resolve_model(self) -> str:
        if self.model_id:
            return self.model_id
        selection = self.client.select_model(
            "audio", ModelRequirements(priority=self.priority)
        )
        logger.info("Model selection: %s", selection.reasoning)
        return selection.selected.model_id

    async def generate_audio_summary(self, summary_text: str) -> AudioSummary:
        """
        Speak `summary_text`.

        Raises:
            ValidationError: The summary is empty.
            ClientError: The speech call failed.
            SchemaError: The endpoint returned no audio.
        """
        summary = summary_text.strip()
        if not summary:
            raise ValidationError("Summary text is empty")

        model_id = self.resolve_model()
        text = SPEECH_PROMPT.format(summary=summary)[:MAX_SPEECH_CHARS]
        request = ChatRequest(
            model_id=model_id,
            messages=(ChatMessage(role="user", content=text),),
            temperature=0.0,
            response_format="audio",
            task_type="audio",
            voice=self.voice,
        )

        logger.info("Generating audio summary with %s (%d chars)", model_id, len(text))
        response = await self.client.invoke(request)
        if not response.audio:
            raise SchemaError("Audio generation returned no data")
        return AudioSummary(audio=response.audio, media_type="audio/mpeg", response=response)

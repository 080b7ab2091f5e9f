from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime

from autogen import ConversableAgent

from clinic.api.models import Patient
from clinic.errors import GenerationFatalError
from clinic.generation.autogen_config import llm_config_from_env
from clinic.generation.base import AssetKind, JsonSchema, SecondaryAsset
from clinic.generation.case_parser import (
    FOLLOW_UP_CASE_SCHEMA,
    NEW_CASE_SCHEMA,
    is_placeholder_avatar,
    parse_generated_case,
)
from clinic.generation.media import MediaClient
from clinic.prompts import load_prompt, render_prompt


def _extract_last_content(messages: object) -> str:
    """Extract the last message content from AG2 chat history."""

    if not isinstance(messages, list):
        return ""

    for msg in reversed(messages):
        if isinstance(msg, dict):
            content = msg.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return ""


def build_case_prompt(continuation: Patient | None) -> tuple[str, JsonSchema]:
    if continuation is None:
        return load_prompt("new_case.txt"), NEW_CASE_SCHEMA
    prompt = render_prompt(
        "follow_up_case.txt",
        name=continuation.name,
        age=continuation.age if continuation.age is not None else "unknown",
        gender=continuation.gender or "unknown",
        occupation=continuation.occupation or "unknown",
        previous_ailment=continuation.ailment,
        visit_count=continuation.visit_count,
    )
    return prompt, FOLLOW_UP_CASE_SCHEMA


@dataclass(slots=True)
class Ag2CaseGenerator:
    """Case generator using the documented `autogen` API.

    Environment variables supported:
    - OPENAI_MODEL
    - OPENAI_API_KEY (optional if OPENAI_BASE_URL is set)
    - OPENAI_BASE_URL (for OpenAI-compatible servers like Ollama, e.g. http://127.0.0.1:11434/v1)

    Secondary assets need `media`; without it they are always absent.
    """

    name: str
    model: str
    rng: random.Random = field(default_factory=lambda: random.Random(random.SystemRandom().randint(1, 2**31 - 1)))
    media: MediaClient | None = None

    def _complete(self, prompt: str, schema: JsonSchema) -> str:
        llm_config = llm_config_from_env(default_model=self.model)

        agent = ConversableAgent(
            name=self.name,
            system_message=load_prompt("case_system.txt"),
            llm_config=llm_config,
            human_input_mode="NEVER",
        )

        # AG2 forwards unknown kwargs through to the OpenAI client.
        result = agent.run(message=prompt, max_turns=1, response_format=schema.as_response_format())
        result.process()

        text = _extract_last_content(list(result.messages))
        if not text:
            summary = result.summary
            if isinstance(summary, str):
                text = summary.strip()
        return text

    async def generate(self, continuation: Patient | None = None) -> Patient:
        prompt, schema = build_case_prompt(continuation)
        # The agent call blocks; keep the event loop free for the player meanwhile.
        text = await asyncio.to_thread(self._complete, prompt, schema)
        if not text:
            raise GenerationFatalError("No text returned from the model")
        return parse_generated_case(text, continuation=continuation, rng=self.rng, now=datetime.now(tz=UTC))

    async def generate_secondary_asset(self, kind: AssetKind, patient: Patient) -> SecondaryAsset | None:
        if self.media is None:
            return None
        if kind == "avatar":
            if not is_placeholder_avatar(patient.image_url):
                return None
            return await self.media.avatar(patient)
        if kind == "condition_image":
            return await self.media.condition_image(patient)
        if not patient.requires_audio:
            return None
        return await self.media.auscultation(patient)

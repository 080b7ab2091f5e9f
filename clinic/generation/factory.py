from __future__ import annotations

import os

from clinic.generation.ag2_backend import Ag2CaseGenerator
from clinic.generation.autogen_config import settings_from_env
from clinic.generation.base import CaseGenerator
from clinic.generation.media import DEFAULT_BASE_URL, MediaClient


def create_default_generator(*, name: str = "clinic-case-writer") -> CaseGenerator:
    """Create the default LLM-backed case generator.

    Currently uses AG2/autogen for cases and reads model configuration from env.
    Media side-calls are only enabled when an API key is configured.
    """

    model = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    s = settings_from_env(default_model=model)

    media = None
    if s.api_key:
        media = MediaClient(
            api_key=s.api_key,
            base_url=s.base_url or DEFAULT_BASE_URL,
            image_model=s.image_model,
            tts_model=s.tts_model,
        )
    return Ag2CaseGenerator(name=name, model=s.model, media=media)

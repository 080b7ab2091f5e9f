from __future__ import annotations

import base64
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from clinic.api.models import Patient
from clinic.generation.base import SecondaryAsset
from clinic.generation.case_parser import auscultation_cue

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"

_AVATAR_DETAILS = (
    "wearing a small medical badge",
    "with a warm smile",
    "with kind eyes",
    "wearing cute glasses",
    "with tidy hair",
)


def _is_model_unavailable(resp: httpx.Response) -> bool:
    if resp.status_code == 404:
        return True
    body = resp.text.casefold()
    return resp.status_code == 400 and "model" in body and ("not found" in body or "invalid" in body)


@dataclass(slots=True)
class MediaClient:
    """Image and speech side-calls against an OpenAI-compatible HTTP API.

    Every method returns None when there is nothing to produce; HTTP errors are
    raised as httpx exceptions so the retry wrapper can classify them.
    """

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    image_model: str = "gpt-image-1"
    tts_model: str = "gpt-4o-mini-tts"
    voice: str = "coral"
    timeout_s: float = 60.0
    rng: random.Random = field(default_factory=random.Random)
    transport: httpx.AsyncBaseTransport | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url.rstrip("/"),
            timeout=self.timeout_s,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self.transport,
        )

    async def _image(self, prompt: str, *, size: str) -> str | None:
        payload: dict[str, Any] = {"model": self.image_model, "prompt": prompt, "size": size, "n": 1}
        async with self._client() as client:
            resp = await client.post("/images/generations", json=payload)
            resp.raise_for_status()
        items = resp.json().get("data") or []
        if not items:
            return None
        first = items[0]
        if first.get("b64_json"):
            return f"data:image/png;base64,{first['b64_json']}"
        return first.get("url")

    async def avatar(self, patient: Patient) -> SecondaryAsset | None:
        detail = self.rng.choice(_AVATAR_DETAILS)
        prompt = (
            "Close-up headshot portrait, face only. Kawaii 3D chibi style. "
            f"A {patient.age or 'adult'} year old {patient.gender or ''} person, occupation: {patient.occupation or 'unknown'}. "
            f"{detail}. Style: soft clay-like textures, pastel color palette, friendly expression. "
            "Centered face, high quality, plain white background."
        )
        data = await self._image(prompt, size="1024x1024")
        return SecondaryAsset(kind="avatar", data=data) if data else None

    async def condition_image(self, patient: Patient) -> SecondaryAsset | None:
        prompt = (
            f"Kawaii style medical illustration of {patient.ailment}. {patient.description}. "
            "White background, isometric view, simple kawaii clinical setting, pastel colors, "
            "soft lighting, 3d render style cute. No text."
        )
        data = await self._image(prompt, size="1536x1024")
        return SecondaryAsset(kind="condition_image", data=data) if data else None

    async def auscultation(self, patient: Patient) -> SecondaryAsset | None:
        cue = auscultation_cue(patient.ailment, patient.symptoms)
        if cue is None:
            return None
        audio_type, sound = cue

        payload = {
            "model": self.tts_model,
            "voice": self.voice,
            "input": f"{sound}. {sound}. {sound}. {sound}.",
            "instructions": "Imitate a stethoscope sound effect, slowly and rhythmically. No words.",
            "response_format": "wav",
        }
        async with self._client() as client:
            resp = await client.post("/audio/speech", json=payload)
        if _is_model_unavailable(resp):
            logger.error("TTS model %s is unavailable; skipping audio", self.tts_model)
            return None
        resp.raise_for_status()
        return SecondaryAsset(kind="audio", data=base64.b64encode(resp.content).decode("ascii"), audio_type=audio_type)

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

from clinic.api.models import AudioType, Patient

AssetKind = Literal["avatar", "condition_image", "audio"]


@dataclass(frozen=True, slots=True)
class JsonSchema:
    """Named JSON Schema sent as an OpenAI-style `response_format`."""

    name: str
    schema: dict[str, Any]
    strict: bool = True

    def as_response_format(self) -> dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {"name": self.name, "schema": self.schema, "strict": self.strict},
        }


@dataclass(frozen=True, slots=True)
class SecondaryAsset:
    kind: AssetKind
    # URL or data: URI for images, base64 audio bytes for audio.
    data: str
    audio_type: AudioType | None = None

    def as_patient_update(self) -> dict[str, Any]:
        if self.kind == "avatar":
            return {"image_url": self.data}
        if self.kind == "condition_image":
            return {"condition_image_url": self.data}
        return {"audio_data": self.data, "audio_type": self.audio_type}


class CaseGenerator(Protocol):
    """Boundary to the (slow, unreliable) case generation service.

    Implementations raise retryable errors for quota/transient failures and
    anything else for fatal ones; callers wrap each call in `with_retry`.
    """

    async def generate(self, continuation: Patient | None = None) -> Patient:  # pragma: no cover
        ...

    async def generate_secondary_asset(self, kind: AssetKind, patient: Patient) -> SecondaryAsset | None:  # pragma: no cover
        ...

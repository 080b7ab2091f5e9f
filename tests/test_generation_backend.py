from __future__ import annotations

import base64
import json
import random

import httpx
import pytest

from clinic.api.models import AudioType
from clinic.errors import GenerationFatalError, is_retryable
from clinic.generation.ag2_backend import Ag2CaseGenerator, build_case_prompt
from clinic.generation.case_parser import placeholder_avatar_url
from clinic.generation.media import MediaClient

CASE_JSON = json.dumps(
    {
        "name": "Hana Ito",
        "age": 27,
        "gender": "Female",
        "occupation": "Florist",
        "description": "I keep wheezing at night since the spring pollen came.",
        "ailment": "Allergic asthma",
        "symptoms": ["Expiratory wheeze", "SpO2 95%", "HR 96", "Night cough", "No fever"],
        "diagnosis_options": ["Allergic asthma", "Common cold", "Heart failure"],
        "correct_diagnosis_index": 0,
        "treatment_options": ["Inhaled corticosteroid", "Antibiotics", "Diuretics"],
        "correct_treatment_index": 0,
        "treatment_description": "A daily inhaler calms the airways like a gentle breeze.",
        "glossary": [{"term": "Wheeze", "definition": "A whistling breath sound."}],
    }
)


def test_build_case_prompt_picks_schema(make_patient) -> None:
    prompt, schema = build_case_prompt(None)
    assert schema.name == "new_case"
    assert "new patient" in prompt

    prompt, schema = build_case_prompt(make_patient(name="Mochi Tanaka", visit_count=2))
    assert schema.name == "follow_up_case"
    assert "Mochi Tanaka" in prompt
    assert "Visits so far: 2" in prompt
    assert "visit_reason" in schema.as_response_format()["json_schema"]["schema"]["required"]


@pytest.mark.asyncio
async def test_generate_parses_structured_output(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[str] = []

    def _fake_complete(self, prompt, schema):  # type: ignore[no-untyped-def]
        seen.append(schema.name)
        return CASE_JSON

    monkeypatch.setattr(Ag2CaseGenerator, "_complete", _fake_complete)
    gen = Ag2CaseGenerator(name="t", model="m", rng=random.Random(0))

    patient = await gen.generate()

    assert seen == ["new_case"]
    assert patient.name == "Hana Ito"
    assert patient.requires_audio is True


@pytest.mark.asyncio
async def test_generate_without_text_is_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(Ag2CaseGenerator, "_complete", lambda self, prompt, schema: "")
    gen = Ag2CaseGenerator(name="t", model="m")

    with pytest.raises(GenerationFatalError):
        await gen.generate()


@pytest.mark.asyncio
async def test_secondary_assets_absent_without_media(make_patient) -> None:
    gen = Ag2CaseGenerator(name="t", model="m")
    assert await gen.generate_secondary_asset("condition_image", make_patient()) is None


def _media(handler) -> MediaClient:  # type: ignore[no-untyped-def]
    return MediaClient(api_key="k", base_url="https://llm.test/v1", transport=httpx.MockTransport(handler), rng=random.Random(0))


@pytest.mark.asyncio
async def test_avatar_only_replaces_placeholder(make_patient) -> None:
    paths: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"data": [{"b64_json": "QUJD"}]})

    gen = Ag2CaseGenerator(name="t", model="m", media=_media(_handler))

    asset = await gen.generate_secondary_asset("avatar", make_patient(image_url=placeholder_avatar_url("Mochi")))
    assert asset is not None
    assert asset.as_patient_update() == {"image_url": "data:image/png;base64,QUJD"}

    assert await gen.generate_secondary_asset("avatar", make_patient(image_url="https://cdn/real.png")) is None
    assert paths == ["/v1/images/generations"]


@pytest.mark.asyncio
async def test_auscultation_audio(make_patient) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["response_format"] == "wav"
        return httpx.Response(200, content=b"RIFF")

    gen = Ag2CaseGenerator(name="t", model="m", media=_media(_handler))

    asset = await gen.generate_secondary_asset("audio", make_patient())
    assert asset is not None
    assert asset.audio_type == AudioType.lungs
    assert base64.b64decode(asset.data) == b"RIFF"

    assert await gen.generate_secondary_asset("audio", make_patient(requires_audio=False)) is None


@pytest.mark.asyncio
async def test_missing_tts_model_yields_no_audio(make_patient) -> None:
    media = _media(lambda request: httpx.Response(404, json={"error": "model not found"}))
    assert await media.auscultation(make_patient()) is None


@pytest.mark.asyncio
async def test_media_server_errors_are_retryable(make_patient) -> None:
    media = _media(lambda request: httpx.Response(503, text="busy"))

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await media.condition_image(make_patient())
    assert is_retryable(exc_info.value)

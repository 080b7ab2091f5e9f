from __future__ import annotations

import json
import random
import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from clinic.api.models import AudioType, GlossaryTerm, Patient, VisitReason
from clinic.errors import CaseParseError
from clinic.generation.base import JsonSchema

REWARD_MIN = 100
REWARD_MAX = 149

_AUSCULTATION: tuple[tuple[re.Pattern[str], AudioType, str], ...] = (
    (
        re.compile(r"murmur|stenosis|regurgitation|arrhythmia|fibrillation|tachycardia|gallop|heart failure"),
        AudioType.heart,
        "Whoosh-dub, whoosh-dub, whoosh-dub",
    ),
    (
        re.compile(r"wheeze|asthma|copd|stridor|bronchospasm|obstructive"),
        AudioType.lungs,
        "Hhhhheeeeeee, hhhhheeeeeee",
    ),
    (
        re.compile(r"crackle|rales|pneumonia|edema|fibrosis|fluid in lung|bronchitis"),
        AudioType.lungs,
        "Crackle-pop, crackle-pop, crackle-pop",
    ),
    (
        re.compile(r"gastroenteritis|obstruction|borborygmi|hyperactive|bowel sound"),
        AudioType.abdomen,
        "Gurgle, gurgle, bloop",
    ),
)


def auscultation_cue(ailment: str, symptoms: list[str]) -> tuple[AudioType, str] | None:
    """Which stethoscope sound (if any) fits this case, and the sound to imitate."""

    condition = " ".join([ailment, *symptoms]).casefold()
    for pattern, audio_type, cue in _AUSCULTATION:
        if pattern.search(condition):
            return audio_type, cue
    return None


def placeholder_avatar_url(name: str) -> str:
    seed = quote(re.sub(r"\s", "", name or "Unknown"))
    return f"https://api.dicebear.com/9.x/glass/svg?seed={seed}&backgroundColor=c084fc"


def is_placeholder_avatar(url: str | None) -> bool:
    return url is None or "dicebear" in url


def _case_schema(*, follow_up: bool) -> JsonSchema:
    str_list: dict[str, Any] = {"type": "array", "items": {"type": "string"}}
    props: dict[str, Any] = {
        "description": {"type": "string"},
        "ailment": {"type": "string"},
        "symptoms": str_list,
        "diagnosis_options": str_list,
        "correct_diagnosis_index": {"type": "integer"},
        "treatment_options": str_list,
        "correct_treatment_index": {"type": "integer"},
        "treatment_description": {"type": "string"},
        "glossary": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {"term": {"type": "string"}, "definition": {"type": "string"}},
                "required": ["term", "definition"],
            },
        },
    }
    if follow_up:
        props["visit_reason"] = {"type": "string", "enum": ["Follow-up", "Recurrence", "New Issue"]}
    else:
        props.update(
            {
                "name": {"type": "string"},
                "age": {"type": "integer"},
                "gender": {"type": "string"},
                "occupation": {"type": "string"},
            }
        )
    return JsonSchema(
        name="follow_up_case" if follow_up else "new_case",
        schema={"type": "object", "additionalProperties": False, "properties": props, "required": sorted(props)},
        strict=True,
    )


NEW_CASE_SCHEMA = _case_schema(follow_up=False)
FOLLOW_UP_CASE_SCHEMA = _case_schema(follow_up=True)


def _pick(data: dict[str, Any], key: str, *variants: str) -> Any:
    # Accept the camelCase spellings some models prefer.
    for k in (key, *variants):
        if k in data:
            return data[k]
    return None


def _required(data: dict[str, Any], key: str, *variants: str) -> Any:
    value = _pick(data, key, *variants)
    if value is None:
        raise CaseParseError(f"Missing '{key}' field")
    return value


def _str_list(value: Any, field: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise CaseParseError(f"'{field}' must be a list of strings")
    return [v.strip() for v in value]


def _glossary(value: Any) -> list[GlossaryTerm]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise CaseParseError("'glossary' must be a list")
    out: list[GlossaryTerm] = []
    for item in value:
        if isinstance(item, dict) and isinstance(item.get("term"), str) and isinstance(item.get("definition"), str):
            out.append(GlossaryTerm(term=item["term"], definition=item["definition"]))
    return out


def _visit_reason(raw: Any) -> VisitReason:
    try:
        return VisitReason(raw)
    except ValueError:
        return VisitReason.follow_up


def parse_generated_case(
    text: str,
    *,
    continuation: Patient | None = None,
    rng: random.Random,
    now: datetime,
) -> Patient:
    """Turn model output into a playable Patient.

    Expected strict JSON object (see NEW_CASE_SCHEMA / FOLLOW_UP_CASE_SCHEMA).
    Continuations keep the patient's identity, demographics, avatar and history;
    only the visit-specific fields come from the model.

    We intentionally reject non-JSON output.
    """

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CaseParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CaseParseError("Expected a JSON object")

    ailment = str(_required(data, "ailment")).strip()
    symptoms = _str_list(_required(data, "symptoms"), "symptoms")
    cue = auscultation_cue(ailment, symptoms)

    fields: dict[str, Any] = {
        "description": str(_required(data, "description")).strip(),
        "ailment": ailment,
        "symptoms": symptoms,
        "diagnosis_options": _str_list(_required(data, "diagnosis_options", "diagnosisOptions"), "diagnosis_options"),
        "correct_diagnosis_index": _required(data, "correct_diagnosis_index", "correctDiagnosisIndex"),
        "treatment_options": _str_list(_required(data, "treatment_options", "treatmentOptions"), "treatment_options"),
        "correct_treatment_index": _required(data, "correct_treatment_index", "correctTreatmentIndex"),
        "treatment_description": str(_pick(data, "treatment_description", "treatmentDescription") or "").strip(),
        "glossary": _glossary(data.get("glossary")),
        "reward": rng.randint(REWARD_MIN, REWARD_MAX),
        "timestamp": now,
        "requires_audio": cue is not None,
    }

    if continuation is None:
        name = _pick(data, "name")
        if not isinstance(name, str) or not name.strip():
            raise CaseParseError("Missing/invalid 'name' field")
        fields.update(
            name=name.strip(),
            age=data.get("age"),
            gender=data.get("gender"),
            occupation=data.get("occupation"),
            image_url=placeholder_avatar_url(name.strip()),
            visit_count=1,
            visit_reason=VisitReason.new_patient,
        )
    else:
        fields.update(
            patient_id=continuation.patient_id,
            name=continuation.name,
            age=continuation.age,
            gender=continuation.gender,
            occupation=continuation.occupation,
            image_url=continuation.image_url or placeholder_avatar_url(continuation.name),
            visit_count=continuation.visit_count + 1,
            visit_reason=_visit_reason(_pick(data, "visit_reason", "visitReason")),
            history=list(continuation.history),
        )

    try:
        return Patient(**fields)
    except ValidationError as e:
        raise CaseParseError(f"Generated case is invalid: {e}") from e

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
    return str(uuid4())


class VisitReason(StrEnum):
    new_patient = "New Patient"
    follow_up = "Follow-up"
    recurrence = "Recurrence"
    new_issue = "New Issue"


class AudioType(StrEnum):
    heart = "Heart"
    lungs = "Lungs"
    abdomen = "Abdomen"


class CasePhase(StrEnum):
    idle = "idle"
    diagnosing = "diagnosing"
    treating = "treating"
    completed = "completed"
    errored = "errored"


AnswerKind = Literal["diagnosis", "treatment"]


class GlossaryTerm(BaseModel):
    model_config = ConfigDict(frozen=True)

    term: str
    definition: str


class PatientHistoryItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    ailment: str
    treatment: str


class Patient(BaseModel):
    """One case: a stable individual (`patient_id`) seen on a specific visit (`visit_id`)."""

    model_config = ConfigDict(frozen=True)

    patient_id: str = Field(default_factory=_new_id)
    visit_id: str = Field(default_factory=_new_id)

    name: str
    age: int | None = None
    gender: str | None = None
    occupation: str | None = None

    # Presenting complaint, first person.
    description: str
    ailment: str
    symptoms: list[str] = Field(default_factory=list)

    diagnosis_options: list[str]
    correct_diagnosis_index: int
    treatment_options: list[str]
    correct_treatment_index: int
    treatment_description: str = ""

    glossary: list[GlossaryTerm] = Field(default_factory=list)

    reward: int = Field(..., ge=0)
    timestamp: datetime
    treated_at: datetime | None = None
    is_treated: bool = False

    visit_count: int = Field(1, ge=1)
    visit_reason: VisitReason = VisitReason.new_patient

    # Append-only log of resolved visits.
    history: list[PatientHistoryItem] = Field(default_factory=list)

    # Best-effort enrichment, filled in after the case is already playable.
    image_url: str | None = None
    condition_image_url: str | None = None
    audio_data: str | None = None
    audio_type: AudioType | None = None
    requires_audio: bool = False

    @model_validator(mode="after")
    def _check_answer_indices(self) -> "Patient":
        if not 0 <= self.correct_diagnosis_index < len(self.diagnosis_options):
            raise ValueError("correct_diagnosis_index is out of range for diagnosis_options")
        if not 0 <= self.correct_treatment_index < len(self.treatment_options):
            raise ValueError("correct_treatment_index is out of range for treatment_options")
        return self

    @property
    def correct_treatment(self) -> str:
        return self.treatment_options[self.correct_treatment_index]


class Upgrades(BaseModel):
    model_config = ConfigDict(frozen=True)

    comfort_level: int = 1
    speed_level: int = 1
    charm_level: int = 1


class UserState(BaseModel):
    """Long-lived player profile. Always persisted as a full snapshot."""

    model_config = ConfigDict(frozen=True)

    clinic_name: str = "My Kawaii Clinic"
    level: int = Field(1, ge=1)
    experience: int = Field(0, ge=0)
    currency: int = 50
    patients_treated: int = 0

    # Persisted so a reload can resume mid-case.
    active_patient: Patient | None = None

    # Patients seen at least once, unique by patient_id.
    roster: list[Patient] = Field(default_factory=list)

    upgrades: Upgrades = Field(default_factory=Upgrades)


class SessionCreateRequest(BaseModel):
    uid: str | None = Field(None, min_length=1, max_length=128)


class SignInRequest(BaseModel):
    uid: str = Field(..., min_length=1, max_length=128)


class AnswerRequest(BaseModel):
    kind: AnswerKind
    option_index: int = Field(..., ge=0)


class SessionView(BaseModel):
    session_id: str
    phase: CasePhase
    patient: Patient | None = None
    error: str | None = None
    auto_advanced: bool = False

    uid: str | None = None
    profile: UserState
    level_title: str

    # "empty" | "pending" | "ready" | "failed"
    prefetch: str = "empty"


class AnswerResponse(BaseModel):
    correct: bool
    session: SessionView


class RecordsResponse(BaseModel):
    records: list[Patient]

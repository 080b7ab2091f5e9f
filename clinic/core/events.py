from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from clinic.api.models import AnswerKind, Patient, UserState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ProfileLoaded:
    """A profile was (re)loaded: startup, sign-in, or sign-out."""

    user: UserState


@dataclass(frozen=True, slots=True)
class CaseRequested:
    """User asked for a case; clears a previous error."""


@dataclass(frozen=True, slots=True)
class CaseLoaded:
    patient: Patient
    from_prefetch: bool = False


@dataclass(frozen=True, slots=True)
class CaseFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class AnswerSubmitted:
    kind: AnswerKind
    option_index: int
    at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class AdvanceRequested:
    auto: bool = False


@dataclass(frozen=True, slots=True)
class EnrichmentArrived:
    """Best-effort asset results for a specific visit."""

    patient_id: str
    visit_id: str
    updates: dict[str, Any]


SessionEvent = (
    ProfileLoaded
    | CaseRequested
    | CaseLoaded
    | CaseFailed
    | AnswerSubmitted
    | AdvanceRequested
    | EnrichmentArrived
)

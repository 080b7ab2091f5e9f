from __future__ import annotations

import math
from datetime import datetime

from clinic.api.models import Patient, PatientHistoryItem, UserState
from clinic.roster import upsert_patient

XP_PER_CASE = 20
XP_TO_LEVEL_UP = 100
LEVEL_UP_BONUS = 100

_LEVEL_TITLES: tuple[tuple[int, str], ...] = (
    (2, "Pre-Med"),
    (4, "MS-1"),
    (6, "MS-2"),
    (8, "MS-3"),
    (10, "MS-4"),
    (13, "Intern"),
    (17, "Resident"),
    (21, "Fellow"),
    (26, "Attending"),
    (32, "Asst Prof"),
    (38, "Assoc Prof"),
    (45, "Professor"),
    (52, "Dept Chair"),
    (60, "Dean"),
)


def level_title(level: int) -> str:
    for max_level, title in _LEVEL_TITLES:
        if level <= max_level:
            return title
    return "Med Director"


def scaled_reward(reward: int, level: int) -> int:
    """Currency credited for a case: +10% per level above 1, floored."""

    return math.floor(reward * (1 + (level - 1) * 0.1))


def mark_treated(patient: Patient, *, at: datetime) -> Patient:
    """Close the visit: flag it treated and append it to the patient's own history."""

    item = PatientHistoryItem(timestamp=at, ailment=patient.ailment, treatment=patient.correct_treatment)
    return patient.model_copy(
        update={
            "is_treated": True,
            "treated_at": at,
            "history": [*patient.history, item],
        }
    )


def apply_completion(user: UserState, patient: Patient, *, at: datetime) -> tuple[UserState, Patient]:
    """Credit a solved case. Returns the new profile and the treated patient.

    Neither input is modified.
    """

    treated = mark_treated(patient, at=at)

    experience = user.experience + XP_PER_CASE
    level = user.level
    currency = user.currency + scaled_reward(patient.reward, user.level)
    if experience >= XP_TO_LEVEL_UP:
        experience -= XP_TO_LEVEL_UP
        level += 1
        currency += LEVEL_UP_BONUS

    new_user = user.model_copy(
        update={
            "experience": experience,
            "level": level,
            "currency": currency,
            "patients_treated": user.patients_treated + 1,
            "active_patient": None,
            "roster": upsert_patient(user.roster, treated),
        }
    )
    return new_user, treated

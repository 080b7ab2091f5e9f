from __future__ import annotations

import random
from collections.abc import Sequence

from clinic.api.models import Patient

RETURNING_PROBABILITY = 0.4


def choose_returning_patient(
    roster: Sequence[Patient],
    *,
    rng: random.Random,
    probability: float = RETURNING_PROBABILITY,
) -> Patient | None:
    """Pick a roster member to come back for another visit, or None for a new patient.

    One draw decides returning vs new; a second picks uniformly from the roster.
    Used for both on-demand requests and prefetch arming.
    """

    if not roster:
        return None
    if rng.random() >= probability:
        return None
    return rng.choice(list(roster))


def upsert_patient(roster: Sequence[Patient], patient: Patient) -> list[Patient]:
    """Return a new roster with `patient` inserted, or replacing the entry with the same patient_id."""

    out = list(roster)
    for idx, existing in enumerate(out):
        if existing.patient_id == patient.patient_id:
            out[idx] = patient
            return out
    out.append(patient)
    return out

from __future__ import annotations

import random

from clinic.roster import RETURNING_PROBABILITY, choose_returning_patient, upsert_patient


def test_empty_roster_always_means_a_new_patient() -> None:
    rng = random.Random(7)
    assert all(choose_returning_patient([], rng=rng, probability=1.0) is None for _ in range(100))


def test_returning_rate_is_close_to_forty_percent(make_patient) -> None:
    roster = [make_patient(name=f"P{i}") for i in range(5)]
    rng = random.Random(1234)

    draws = 10_000
    returning = sum(choose_returning_patient(roster, rng=rng) is not None for _ in range(draws))

    assert abs(returning / draws - RETURNING_PROBABILITY) < 0.02


def test_returning_pick_comes_from_the_roster(make_patient) -> None:
    roster = [make_patient(name=f"P{i}") for i in range(3)]
    rng = random.Random(3)

    picks = {choose_returning_patient(roster, rng=rng, probability=1.0).patient_id for _ in range(200)}

    assert picks == {p.patient_id for p in roster}


def test_upsert_replaces_by_patient_id(make_patient) -> None:
    a = make_patient(name="A")
    b = make_patient(name="B")
    a2 = a.model_copy(update={"visit_count": 2})

    roster = upsert_patient([a, b], a2)

    assert [p.name for p in roster] == ["A", "B"]
    assert roster[0].visit_count == 2


def test_upsert_appends_new_patient_without_touching_input(make_patient) -> None:
    a = make_patient(name="A")
    original = [a]

    roster = upsert_patient(original, make_patient(name="C"))

    assert [p.name for p in roster] == ["A", "C"]
    assert original == [a]

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from statemachine import State, StateMachine

from clinic.api.models import CasePhase, Patient, UserState
from clinic.core.events import (
    AdvanceRequested,
    AnswerSubmitted,
    CaseFailed,
    CaseLoaded,
    CaseRequested,
    EnrichmentArrived,
    ProfileLoaded,
    SessionEvent,
)
from clinic.core.progression import apply_completion
from clinic.errors import InvalidActionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Session:
    """Everything one player session holds in memory.

    Never mutated: every transition returns a new value, so a late result can be
    checked against the current session by identity.
    """

    user: UserState
    phase: CasePhase = CasePhase.idle
    patient: Patient | None = None
    error: str | None = None
    # Whether the last Completed -> Idle step came from the dwell timer.
    auto_advanced: bool = False


# ---- side effects requested by a transition (executed by the coordinator) ----


@dataclass(frozen=True, slots=True)
class PersistProfile:
    user: UserState


@dataclass(frozen=True, slots=True)
class RecordHistory:
    patient: Patient


@dataclass(frozen=True, slots=True)
class ArmPrefetch:
    roster: tuple[Patient, ...]


@dataclass(frozen=True, slots=True)
class StartDwellTimer:
    pass


@dataclass(frozen=True, slots=True)
class LoadNextCase:
    pass


@dataclass(frozen=True, slots=True)
class StartEnrichment:
    patient: Patient


Effect = PersistProfile | RecordHistory | ArmPrefetch | StartDwellTimer | LoadNextCase | StartEnrichment


@dataclass(frozen=True, slots=True)
class AppliedEvent:
    """Result of applying an event.

    - `state_changed`: False means the event was a no-op (stale or already handled).
    - `effects`: work the caller must run, in order.
    - `answer_correct`: set for AnswerSubmitted only.
    """

    session: Session
    state_changed: bool
    effects: list[Effect] = field(default_factory=list)
    answer_correct: bool | None = None


class CaseFSM(StateMachine):
    """Phase guard for one case.

    idle -> diagnosing -> treating -> completed -> idle ...; errored is only
    reachable from idle (a failed request never leaves a half-built case).
    """

    idle = State(CasePhase.idle.value, value=CasePhase.idle.value, initial=True)
    diagnosing = State(CasePhase.diagnosing.value, value=CasePhase.diagnosing.value)
    treating = State(CasePhase.treating.value, value=CasePhase.treating.value)
    completed = State(CasePhase.completed.value, value=CasePhase.completed.value)
    errored = State(CasePhase.errored.value, value=CasePhase.errored.value)

    case_loaded = idle.to(diagnosing)
    case_failed = idle.to(errored)
    retry = errored.to(idle) | idle.to.itself()
    diagnosis_confirmed = diagnosing.to(treating)
    treatment_confirmed = treating.to(completed)
    advance = completed.to(idle)
    profile_switched = (
        idle.to.itself() | diagnosing.to(idle) | treating.to(idle) | completed.to(idle) | errored.to(idle)
    )

    def __init__(self, phase: CasePhase):
        super().__init__(start_value=phase.value)

    @property
    def phase(self) -> CasePhase:
        return CasePhase(str(self.current_state.value))


def _unchanged(session: Session, *, why: str) -> AppliedEvent:
    logger.debug("Ignoring event in phase %s: %s", session.phase.value, why)
    return AppliedEvent(session=session, state_changed=False)


def apply_event(session: Session, event: SessionEvent) -> AppliedEvent:
    """Pure transition function: (Session, event) -> new Session + effects."""

    fsm = CaseFSM(session.phase)

    if isinstance(event, ProfileLoaded):
        fsm.send("profile_switched")
        new = Session(user=event.user)
        effects: list[Effect] = []
        if event.user.active_patient is not None:
            # Resume the interrupted case.
            fsm.send("case_loaded")
            new = replace(new, patient=event.user.active_patient)
            effects.append(StartEnrichment(event.user.active_patient))
        return AppliedEvent(session=replace(new, phase=fsm.phase), state_changed=True, effects=effects)

    if isinstance(event, CaseRequested):
        if session.phase not in (CasePhase.idle, CasePhase.errored):
            raise InvalidActionError("A case is already in progress")
        fsm.send("retry")
        return AppliedEvent(session=replace(session, phase=fsm.phase, error=None), state_changed=True)

    if isinstance(event, CaseLoaded):
        if session.phase != CasePhase.idle:
            return _unchanged(session, why="case arrived after the session moved on")
        fsm.send("case_loaded")
        user = session.user.model_copy(update={"active_patient": event.patient})
        new = replace(session, user=user, patient=event.patient, phase=fsm.phase, error=None)
        return AppliedEvent(
            session=new,
            state_changed=True,
            effects=[PersistProfile(user), StartEnrichment(event.patient)],
        )

    if isinstance(event, CaseFailed):
        if session.phase != CasePhase.idle:
            return _unchanged(session, why="failure arrived after the session moved on")
        fsm.send("case_failed")
        return AppliedEvent(session=replace(session, phase=fsm.phase, error=event.reason), state_changed=True)

    if isinstance(event, AnswerSubmitted):
        return _apply_answer(session, fsm, event)

    if isinstance(event, AdvanceRequested):
        if session.phase != CasePhase.completed:
            return _unchanged(session, why="advance already handled")
        fsm.send("advance")
        new = replace(session, phase=fsm.phase, patient=None, error=None, auto_advanced=event.auto)
        return AppliedEvent(session=new, state_changed=True, effects=[LoadNextCase()])

    if isinstance(event, EnrichmentArrived):
        return _apply_enrichment(session, event)

    raise TypeError(f"Unknown session event: {event!r}")


def _apply_answer(session: Session, fsm: CaseFSM, event: AnswerSubmitted) -> AppliedEvent:
    patient = session.patient

    if event.kind == "diagnosis":
        if session.phase != CasePhase.diagnosing or patient is None:
            raise InvalidActionError("Case is not awaiting a diagnosis")
        if not 0 <= event.option_index < len(patient.diagnosis_options):
            raise InvalidActionError("option_index is out of range")
        if event.option_index != patient.correct_diagnosis_index:
            return AppliedEvent(session=session, state_changed=False, answer_correct=False)
        fsm.send("diagnosis_confirmed")
        return AppliedEvent(session=replace(session, phase=fsm.phase), state_changed=True, answer_correct=True)

    if session.phase != CasePhase.treating or patient is None:
        raise InvalidActionError("Case is not awaiting a treatment")
    if not 0 <= event.option_index < len(patient.treatment_options):
        raise InvalidActionError("option_index is out of range")
    if event.option_index != patient.correct_treatment_index:
        return AppliedEvent(session=session, state_changed=False, answer_correct=False)

    fsm.send("treatment_confirmed")
    user, treated = apply_completion(session.user, patient, at=event.at)
    new = replace(session, user=user, patient=treated, phase=fsm.phase)
    return AppliedEvent(
        session=new,
        state_changed=True,
        effects=[
            PersistProfile(user),
            RecordHistory(treated),
            ArmPrefetch(tuple(user.roster)),
            StartDwellTimer(),
        ],
        answer_correct=True,
    )


def _apply_enrichment(session: Session, event: EnrichmentArrived) -> AppliedEvent:
    current = session.patient
    if current is None or (current.patient_id, current.visit_id) != (event.patient_id, event.visit_id):
        return _unchanged(session, why="enrichment for a patient that is no longer active")

    updates = {k: v for k, v in event.updates.items() if v is not None}
    if not updates:
        return _unchanged(session, why="empty enrichment")

    patient = current.model_copy(update=updates)
    user = session.user
    effects: list[Effect] = []
    active = user.active_patient
    if active is not None and active.visit_id == patient.visit_id:
        user = user.model_copy(update={"active_patient": patient})
        effects.append(PersistProfile(user))

    return AppliedEvent(session=replace(session, user=user, patient=patient), state_changed=True, effects=effects)

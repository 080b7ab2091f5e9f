from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from typing import Any
from uuid import uuid4

from clinic.api.models import AnswerKind, CasePhase, Patient, SessionView, UserState
from clinic.config import EngineSettings
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
from clinic.core.progression import level_title
from clinic.errors import describe_generation_error
from clinic.fsm import (
    AppliedEvent,
    ArmPrefetch,
    Effect,
    LoadNextCase,
    PersistProfile,
    RecordHistory,
    Session,
    StartDwellTimer,
    StartEnrichment,
    apply_event,
)
from clinic.generation.base import AssetKind, CaseGenerator, SecondaryAsset
from clinic.persistence.gateway import FEED_LIMIT, PersistenceGateway
from clinic.prefetch import PrefetchSlot
from clinic.retry import Sleep, with_retry
from clinic.roster import choose_returning_patient

logger = logging.getLogger(__name__)

ENRICHMENT_KINDS: tuple[AssetKind, ...] = ("avatar", "condition_image", "audio")


class SessionCoordinator:
    """Owns one player session and runs the side effects its transitions ask for.

    Contract:
      - transitions are computed by `fsm.apply_event`; this class only swaps in
        the new Session and executes the returned effects.
      - everything runs on one event loop; the Session is replaced wholesale,
        never mutated, so there are no locks.
      - in-flight work is never cancelled to "undo" it: a load carries a token
        and its result is dropped if the token is no longer current.
    """

    def __init__(
        self,
        *,
        generator: CaseGenerator,
        gateway: PersistenceGateway,
        settings: EngineSettings | None = None,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
        on_change: Callable[["SessionCoordinator"], Awaitable[None]] | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or str(uuid4())
        self.generator = generator
        self.gateway = gateway
        self.settings = settings or EngineSettings()
        self.rng = rng or random.Random(random.SystemRandom().randint(1, 2**31 - 1))
        self._sleep = sleep
        self._on_change = on_change

        self._session = Session(user=UserState())
        self._uid: str | None = None
        self._prefetch = PrefetchSlot()

        self._load_task: asyncio.Task[None] | None = None
        self._load_token: object | None = None
        self._dwell_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # ---- read-only surface ----

    @property
    def session(self) -> Session:
        return self._session

    @property
    def uid(self) -> str | None:
        return self._uid

    @property
    def prefetch(self) -> PrefetchSlot:
        return self._prefetch

    def view(self) -> SessionView:
        s = self._session
        return SessionView(
            session_id=self.session_id,
            phase=s.phase,
            patient=s.patient,
            error=s.error,
            auto_advanced=s.auto_advanced,
            uid=self._uid,
            profile=s.user,
            level_title=level_title(s.user.level),
            prefetch=self._prefetch.status,
        )

    # ---- actions ----

    async def start(self, uid: str | None = None) -> Session:
        await self._switch_profile(uid)
        return self._session

    async def sign_in(self, uid: str) -> Session:
        if uid == self._uid:
            return self._session
        await self._switch_profile(uid)
        return self._session

    async def sign_out(self) -> Session:
        await self._switch_profile(None)
        return self._session

    async def request_new_case(self) -> Session:
        """Ask for a case now (initial load, or retry after an error)."""

        running = self._load_task
        if running is not None and not running.done():
            await asyncio.shield(running)
            return self._session

        if self._session.phase == CasePhase.completed:
            return await self.force_advance()

        await self._dispatch(CaseRequested())
        await asyncio.shield(self._start_load(prefer_prefetch=False))
        return self._session

    async def submit_answer(self, kind: AnswerKind, option_index: int) -> bool:
        applied = await self._dispatch(AnswerSubmitted(kind=kind, option_index=option_index))
        return bool(applied.answer_correct)

    async def force_advance(self) -> Session:
        await self._advance(auto=False)
        return self._session

    async def history(self, limit: int = FEED_LIMIT) -> list[Patient]:
        return await self.gateway.query_history(self._uid, limit=limit)

    async def drain(self) -> None:
        """Wait until no background work (loads, dwell timer, enrichment) is left."""

        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        self._invalidate_pending()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    # ---- internals ----

    async def _dispatch(self, event: SessionEvent) -> AppliedEvent:
        applied = apply_event(self._session, event)
        self._session = applied.session
        if applied.state_changed:
            logger.debug("Session %s: %s -> phase %s", self.session_id, type(event).__name__, applied.session.phase.value)

        for effect in applied.effects:
            if isinstance(effect, (PersistProfile, RecordHistory)):
                # Saving is best-effort; the remaining effects still run.
                try:
                    await self._run_effect(effect)
                except Exception:
                    logger.exception("%s failed in session %s", type(effect).__name__, self.session_id)
                continue
            await self._run_effect(effect)

        if applied.state_changed and self._on_change is not None:
            await self._on_change(self)
        return applied

    async def _run_effect(self, effect: Effect) -> None:
        if isinstance(effect, PersistProfile):
            await self.gateway.save_profile(effect.user, self._uid)
        elif isinstance(effect, RecordHistory):
            await self.gateway.append_history_record(effect.patient, self._uid)
        elif isinstance(effect, ArmPrefetch):
            roster = effect.roster
            self._prefetch.arm(lambda: self._generate_case(roster))
        elif isinstance(effect, StartDwellTimer):
            self._cancel_dwell()
            self._dwell_task = self._spawn(self._auto_advance_after_dwell())
        elif isinstance(effect, LoadNextCase):
            self._start_load(prefer_prefetch=True)
        elif isinstance(effect, StartEnrichment):
            self._spawn(self._enrich(effect.patient))
        else:
            raise TypeError(f"Unknown effect: {effect!r}")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed in session %s", self.session_id, exc_info=exc)

    async def _generate_case(self, roster: Sequence[Patient]) -> Patient:
        returning = choose_returning_patient(roster, rng=self.rng, probability=self.settings.returning_probability)
        if returning is not None:
            logger.info("Contacting returning patient %s (%s)", returning.name, returning.patient_id)
        return await with_retry(
            lambda: self.generator.generate(returning),
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay,
            sleep=self._sleep,
        )

    def _start_load(self, *, prefer_prefetch: bool) -> asyncio.Task[None]:
        token = object()
        self._load_token = token
        self._load_task = self._spawn(self._load_case(token, prefer_prefetch=prefer_prefetch))
        return self._load_task

    async def _load_case(self, token: object, *, prefer_prefetch: bool) -> None:
        patient: Patient | None = None
        from_prefetch = False

        if prefer_prefetch:
            try:
                patient = await self._prefetch.consume()
                from_prefetch = patient is not None
            except Exception as e:
                logger.warning("Prefetched case failed (%s); requesting a fresh one", e)

        if patient is None:
            try:
                patient = await self._generate_case(self._session.user.roster)
            except Exception as e:
                logger.error("Case request failed: %s", e)
                if token is self._load_token:
                    await self._dispatch(CaseFailed(describe_generation_error(e)))
                return

        if token is not self._load_token:
            logger.debug("Discarding stale case %s", patient.visit_id)
            return
        await self._dispatch(CaseLoaded(patient, from_prefetch=from_prefetch))

    async def _advance(self, *, auto: bool) -> None:
        if not auto:
            self._cancel_dwell()
        applied = await self._dispatch(AdvanceRequested(auto=auto))
        if not applied.state_changed:
            return
        if self._load_task is not None:
            await asyncio.shield(self._load_task)

    async def _auto_advance_after_dwell(self) -> None:
        await self._sleep(self.settings.dwell_seconds)
        # The dwell is a floor: keep waiting for the prefetch, however long it takes.
        if not await self._prefetch.wait_resolved():
            logger.info("Next case is not ready; waiting for a manual advance")
            return
        await self._advance(auto=True)

    def _cancel_dwell(self) -> None:
        task, self._dwell_task = self._dwell_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _invalidate_pending(self) -> None:
        self._load_token = None
        self._load_task = None
        self._prefetch.invalidate()
        self._cancel_dwell()

    async def _switch_profile(self, uid: str | None) -> None:
        self._invalidate_pending()
        self._uid = uid

        user: UserState | None = None
        if uid:
            user = await self.gateway.migrate_local_to_remote(uid)
        if user is None:
            user = await self.gateway.load_profile(uid)
        await self._dispatch(ProfileLoaded(user))

    async def _fetch_asset(self, kind: AssetKind, patient: Patient) -> SecondaryAsset | None:
        return await with_retry(
            lambda: self.generator.generate_secondary_asset(kind, patient),
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay,
            sleep=self._sleep,
        )

    async def _enrich(self, patient: Patient) -> None:
        results = await asyncio.gather(
            *(self._fetch_asset(kind, patient) for kind in ENRICHMENT_KINDS),
            return_exceptions=True,
        )

        updates: dict[str, Any] = {}
        for kind, result in zip(ENRICHMENT_KINDS, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Enrichment %s failed for visit %s: %s", kind, patient.visit_id, result)
                continue
            if result is not None:
                updates.update(result.as_patient_update())

        if updates:
            await self._dispatch(EnrichmentArrived(patient.patient_id, patient.visit_id, updates))

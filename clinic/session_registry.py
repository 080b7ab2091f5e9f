from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable

from clinic.config import EngineSettings
from clinic.generation.base import CaseGenerator
from clinic.persistence.gateway import PersistenceGateway
from clinic.retry import Sleep
from clinic.session import SessionCoordinator
from clinic.websocket_hub import SessionUpdateHub, hub as default_hub

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-memory map of live sessions for one API process.

    Every coordinator shares the registry's generator and persistence gateway;
    state changes are pushed to the WebSocket hub.
    """

    def __init__(
        self,
        *,
        generator: CaseGenerator,
        gateway: PersistenceGateway,
        settings: EngineSettings | None = None,
        hub: SessionUpdateHub = default_hub,
        rng_factory: Callable[[], random.Random] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.generator = generator
        self.gateway = gateway
        self.settings = settings or EngineSettings()
        self.hub = hub
        self._rng_factory = rng_factory
        self._sleep = sleep
        self._sessions: dict[str, SessionCoordinator] = {}

    async def _notify(self, coordinator: SessionCoordinator) -> None:
        await self.hub.publish(coordinator.view())

    async def create(self, uid: str | None = None) -> SessionCoordinator:
        coordinator = SessionCoordinator(
            generator=self.generator,
            gateway=self.gateway,
            settings=self.settings,
            rng=self._rng_factory() if self._rng_factory else None,
            sleep=self._sleep,
            on_change=self._notify,
        )
        self._sessions[coordinator.session_id] = coordinator
        await coordinator.start(uid)
        logger.info("Created session %s (uid=%s)", coordinator.session_id, uid)
        return coordinator

    def get(self, session_id: str) -> SessionCoordinator | None:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> None:
        coordinator = self._sessions.pop(session_id, None)
        if coordinator is not None:
            await coordinator.aclose()
        await self.hub.close_session(session_id)

    async def aclose(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)

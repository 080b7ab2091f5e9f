from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

from clinic.api.models import SessionView

logger = logging.getLogger(__name__)

SNAPSHOT = "session_snapshot"
UPDATED = "session_updated"

# Application close code: the session id is unknown or was closed.
SESSION_GONE = 4404


def session_update(view: SessionView, *, kind: str = UPDATED) -> dict[str, object]:
    """Wire payload for one session state.

    Carries what a client needs to redraw the case header without polling;
    the full patient card is fetched with GET /sessions/{id}.
    """

    patient = view.patient
    return {
        "type": kind,
        "session_id": view.session_id,
        "phase": view.phase.value,
        "error": view.error,
        "auto_advanced": view.auto_advanced,
        "prefetch": view.prefetch,
        "uid": view.uid,
        "patient_id": patient.patient_id if patient else None,
        "visit_id": patient.visit_id if patient else None,
        "level": view.profile.level,
        "currency": view.profile.currency,
    }


class SessionUpdateHub:
    """In-process fan-out of session state to WebSocket subscribers.

    Auto-advance and enrichment change a session with no HTTP request in
    flight, so clients learn about them only through here. A subscriber first
    gets a snapshot of the current state, then every later update.
    """

    def __init__(self) -> None:
        self._by_session: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def subscribe(self, websocket: WebSocket, snapshot: SessionView) -> None:
        # Held across the snapshot so no update can overtake it.
        async with self._lock:
            await websocket.accept()
            await websocket.send_json(session_update(snapshot, kind=SNAPSHOT))
            self._by_session[snapshot.session_id].add(websocket)

    async def unsubscribe(self, session_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_session.get(session_id)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_session.pop(session_id, None)

    async def publish(self, view: SessionView) -> None:
        async with self._lock:
            conns = list(self._by_session.get(view.session_id, ()))
        if not conns:
            return

        payload = session_update(view)
        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug("Dropping websocket for session %s: %s", view.session_id, e)
                dead.append(ws)

        for ws in dead:
            await self.unsubscribe(view.session_id, ws)

    async def close_session(self, session_id: str) -> None:
        """Disconnect every subscriber of a session that no longer exists."""

        async with self._lock:
            conns = self._by_session.pop(session_id, set())
        for ws in conns:
            try:
                await ws.close(code=SESSION_GONE)
            except Exception as e:
                logger.debug("Close failed for session %s websocket: %s", session_id, e)


hub = SessionUpdateHub()

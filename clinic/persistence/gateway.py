from __future__ import annotations

import logging

from clinic.api.models import Patient, UserState
from clinic.errors import PersistenceLocalUnavailable, PersistenceRemoteUnavailable
from clinic.persistence.local import LocalStore
from clinic.persistence.remote import RemoteStore

logger = logging.getLogger(__name__)

HISTORY_CAP = 50
FEED_LIMIT = 50
RECORDS_LIMIT = 200


class PersistenceGateway:
    """Local store always, remote store only for a signed-in uid.

    Local is the fallback of record and is written on every save. Remote is a
    best-effort mirror: its failures are logged and never raised. A failing
    local store degrades to defaults instead of raising.
    """

    def __init__(self, *, local: LocalStore, remote: RemoteStore | None = None, history_cap: int = HISTORY_CAP):
        self.local = local
        self.remote = remote
        self.history_cap = history_cap

    def _remote_for(self, uid: str | None) -> RemoteStore | None:
        if not uid or self.remote is None:
            return None
        return self.remote

    async def load_profile(self, uid: str | None = None) -> UserState:
        remote = self._remote_for(uid)
        if remote is not None and uid:
            try:
                state = remote.get_profile(uid)
                if state is None:
                    state = UserState()
                    remote.upsert_profile(uid, state)
                return state
            except PersistenceRemoteUnavailable as e:
                logger.warning("Remote profile read failed for %s; using local copy: %s", uid, e)

        try:
            state = self.local.read_profile()
            if state is None:
                state = UserState()
                self.local.write_profile(state)
            return state
        except PersistenceLocalUnavailable as e:
            logger.error("Local profile unavailable; continuing with defaults: %s", e)
            return UserState()

    async def save_profile(self, state: UserState, uid: str | None = None) -> None:
        try:
            self.local.write_profile(state)
        except PersistenceLocalUnavailable as e:
            logger.error("Local profile write failed; progress is not durable: %s", e)

        remote = self._remote_for(uid)
        if remote is not None and uid:
            try:
                remote.upsert_profile(uid, state)
            except PersistenceRemoteUnavailable as e:
                logger.warning("Remote profile write failed for %s: %s", uid, e)

    async def append_history_record(self, patient: Patient, uid: str | None = None) -> None:
        try:
            history = self.local.read_history()
            history.insert(0, patient)
            self.local.write_history(history[: self.history_cap])
        except PersistenceLocalUnavailable as e:
            logger.error("Local history write failed: %s", e)

        remote = self._remote_for(uid)
        if remote is not None and uid:
            try:
                remote.add_history_record(uid, patient)
            except PersistenceRemoteUnavailable as e:
                logger.warning("Remote history write failed for %s: %s", uid, e)

    async def query_history(self, uid: str | None = None, limit: int = FEED_LIMIT) -> list[Patient]:
        """Most recent records first.

        Remote serves up to `limit`; the local list never holds more than the cap.
        """

        if limit < 1:
            raise ValueError("limit must be >= 1")

        remote = self._remote_for(uid)
        if remote is not None and uid:
            try:
                return remote.query_history(uid, limit=limit)
            except PersistenceRemoteUnavailable as e:
                logger.warning("Remote history read failed for %s; using local copy: %s", uid, e)

        return self._local_history()[:limit]

    async def migrate_local_to_remote(self, uid: str) -> UserState | None:
        """Seed a new remote profile from this device.

        Only runs when the remote profile does not exist yet; otherwise the
        existing remote profile is returned untouched. Returns None when the
        remote store is disabled or failed, so callers fall back to load_profile.
        """

        if self.remote is None:
            return None

        try:
            existing = self.remote.get_profile(uid)
            if existing is not None:
                return existing

            local_state = await self.load_profile(None)
            self.remote.upsert_profile(uid, local_state)

            # Oldest first, so insertion order follows the original chronology.
            history = self._local_history()
            for patient in reversed(history):
                self.remote.add_history_record(uid, patient)
            logger.info("Migrated local profile and %d history records to %s", len(history), uid)
            return local_state
        except PersistenceRemoteUnavailable as e:
            logger.error("Migration to remote failed for %s: %s", uid, e)
            return None

    def _local_history(self) -> list[Patient]:
        try:
            return self.local.read_history()
        except PersistenceLocalUnavailable as e:
            logger.error("Local history unavailable: %s", e)
            return []

from __future__ import annotations

import os
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from clinic.api.models import Patient, UserState
from clinic.errors import PersistenceLocalUnavailable

PROFILE_KEY = "kawaii_clinic_user"
HISTORY_KEY = "kawaii_clinic_patients"

_PATIENT_LIST = TypeAdapter(list[Patient])


class LocalStore:
    """Device-scoped key/value store: one JSON file per key under `root`.

    Reads and writes are synchronous; every failure surfaces as
    PersistenceLocalUnavailable.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceLocalUnavailable(f"Cannot read {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            # Atomic on POSIX and Windows: readers never see a half-written file.
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceLocalUnavailable(f"Cannot write {key}: {e}") from e

    def read_profile(self) -> UserState | None:
        raw = self.get(PROFILE_KEY)
        if raw is None:
            return None
        try:
            return UserState.model_validate_json(raw)
        except ValidationError as e:
            raise PersistenceLocalUnavailable(f"Stored profile is unreadable: {e}") from e

    def write_profile(self, state: UserState) -> None:
        self.set(PROFILE_KEY, state.model_dump_json())

    def read_history(self) -> list[Patient]:
        raw = self.get(HISTORY_KEY)
        if raw is None:
            return []
        try:
            return _PATIENT_LIST.validate_json(raw)
        except ValidationError as e:
            raise PersistenceLocalUnavailable(f"Stored history is unreadable: {e}") from e

    def write_history(self, records: list[Patient]) -> None:
        self.set(HISTORY_KEY, _PATIENT_LIST.dump_json(records).decode("utf-8"))

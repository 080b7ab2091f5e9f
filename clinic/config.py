from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class EngineSettings:
    # Minimum time the Completed screen stays up before auto-advancing.
    dwell_seconds: float = 3.0
    returning_probability: float = 0.4
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    history_cap: int = 50
    local_dir: Path = Path.home() / ".kawaii_clinic"
    # None disables the remote store entirely (guest-only mode).
    redis_url: str | None = None


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def settings_from_env() -> EngineSettings:
    defaults = EngineSettings()
    local_dir = os.environ.get("CLINIC_LOCAL_DIR")
    return EngineSettings(
        dwell_seconds=_float("CLINIC_DWELL_SECONDS", defaults.dwell_seconds),
        returning_probability=_float("CLINIC_RETURNING_PROBABILITY", defaults.returning_probability),
        retry_attempts=_int("CLINIC_RETRY_ATTEMPTS", defaults.retry_attempts),
        retry_base_delay=_float("CLINIC_RETRY_BASE_DELAY", defaults.retry_base_delay),
        history_cap=_int("CLINIC_HISTORY_CAP", defaults.history_cap),
        local_dir=Path(local_dir).expanduser() if local_dir else defaults.local_dir,
        redis_url=os.environ.get("REDIS_URL") or None,
    )

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from clinic.api.models import Patient
from clinic.generation.base import AssetKind, SecondaryAsset


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs (PyCharm/CLI).

    This makes OPENAI_BASE_URL / OPENAI_MODEL available to tests without needing
    to manually export them in your shell.

    In CI, we *don't* auto-load `.env` by default, so integration tests that require
    a live model endpoint stay skipped unless explicitly opted-in.
    """

    # Don't implicitly enable external integration tests in CI.
    # Opt-in locally with: CLINIC_LOAD_DOTENV_FOR_TESTS=1
    if os.environ.get("CI") and os.environ.get("CLINIC_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)

    # If using a local OpenAI-compatible endpoint, some clients require a key string.
    if os.environ.get("OPENAI_BASE_URL") and not os.environ.get("OPENAI_API_KEY"):
        os.environ["OPENAI_API_KEY"] = "ollama"


def _make_patient(**overrides: Any) -> Patient:
    data: dict[str, Any] = {
        "name": "Mochi Tanaka",
        "age": 34,
        "gender": "female",
        "occupation": "Baker",
        "description": "My chest feels tight whenever I carry flour sacks.",
        "ailment": "Asthma",
        "symptoms": ["Wheezing on expiration", "Shortness of breath"],
        "diagnosis_options": ["Asthma", "Pneumonia", "GERD", "Anxiety"],
        "correct_diagnosis_index": 0,
        "treatment_options": ["Antibiotics", "Inhaled bronchodilator", "Antacids", "Rest"],
        "correct_treatment_index": 1,
        "treatment_description": "A rescue inhaler opens the airways.",
        "reward": 120,
        "timestamp": datetime(2024, 5, 1, 9, 0, tzinfo=UTC),
        "requires_audio": True,
    }
    data.update(overrides)
    return Patient(**data)


@pytest.fixture()
def make_patient() -> Callable[..., Patient]:
    return _make_patient


class FakeCaseGenerator:
    """In-memory case generator with scriptable failures and a release gate.

    - `failures` are raised one per call, in order, before calls succeed again.
    - while `gate` is set to an unset asyncio.Event, calls block on it.
    """

    def __init__(self) -> None:
        self.calls: list[Patient | None] = []
        self.asset_calls: list[tuple[AssetKind, str]] = []
        self.failures: list[BaseException] = []
        self.gate: asyncio.Event | None = None
        self.assets: dict[AssetKind, SecondaryAsset] = {}
        self.asset_errors: dict[AssetKind, BaseException] = {}
        self._made = 0

    async def generate(self, continuation: Patient | None = None) -> Patient:
        self.calls.append(continuation)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)

        self._made += 1
        if continuation is not None:
            return _make_patient(
                patient_id=continuation.patient_id,
                name=continuation.name,
                ailment="Asthma flare-up",
                visit_count=continuation.visit_count + 1,
                visit_reason="Follow-up",
                history=continuation.history,
                reward=100 + self._made,
            )
        return _make_patient(name=f"Patient {self._made}", reward=100 + self._made)

    async def generate_secondary_asset(self, kind: AssetKind, patient: Patient) -> SecondaryAsset | None:
        self.asset_calls.append((kind, patient.visit_id))
        if kind in self.asset_errors:
            raise self.asset_errors[kind]
        return self.assets.get(kind)


@pytest.fixture()
def generator() -> FakeCaseGenerator:
    return FakeCaseGenerator()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def fake_sleep(sleeps: list[float]) -> Callable[[float], Any]:
    """Records requested delays and yields to the loop instead of sleeping."""

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(0)

    return _sleep


@pytest.fixture()
def fake_redis():
    import fakeredis

    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def local_store(tmp_path: Path):
    from clinic.persistence.local import LocalStore

    return LocalStore(tmp_path / "local")


@pytest.fixture()
def remote_store(fake_redis):
    from clinic.persistence.remote import RemoteStore

    return RemoteStore(fake_redis)


@pytest.fixture()
def gateway(local_store, remote_store):
    from clinic.persistence.gateway import PersistenceGateway

    return PersistenceGateway(local=local_store, remote=remote_store)


@pytest.fixture()
def client_and_registry(gateway, generator) -> Generator[tuple[Any, Any], None, None]:
    """FastAPI TestClient wired to a registry over fakeredis, tmp_path and the fake generator."""

    from fastapi.testclient import TestClient

    from clinic.api.deps import get_registry
    from clinic.config import EngineSettings
    from clinic.main import app
    from clinic.session_registry import SessionRegistry
    from clinic.websocket_hub import SessionUpdateHub

    # A long dwell keeps auto-advance out of the way; tests advance explicitly.
    settings = EngineSettings(dwell_seconds=3600.0, returning_probability=0.0, retry_base_delay=0.0)
    registry = SessionRegistry(generator=generator, gateway=gateway, settings=settings, hub=SessionUpdateHub())

    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as c:
        yield c, registry
        c.portal.call(registry.aclose)
    app.dependency_overrides.clear()

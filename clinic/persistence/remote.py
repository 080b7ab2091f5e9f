from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from uuid import uuid4

import redis
from pydantic import ValidationError

from clinic.api.models import Patient, UserState
from clinic.errors import PersistenceRemoteUnavailable

USERS_SET_KEY = "clinic:users"
USER_KEY_PREFIX = "clinic:user:"  # + {uid}; history lives at + {uid}:patients


def _user_key(uid: str) -> str:
    return f"{USER_KEY_PREFIX}{uid}"


def _history_key(uid: str) -> str:
    return f"{USER_KEY_PREFIX}{uid}:patients"


def _record_score(patient: Patient) -> float:
    return (patient.treated_at or patient.timestamp).timestamp()


@contextmanager
def _remote_call(op: str) -> Iterator[None]:
    try:
        yield
    except (redis.RedisError, ValidationError, json.JSONDecodeError, KeyError) as e:
        raise PersistenceRemoteUnavailable(f"{op} failed: {e}") from e


class RemoteStore:
    """Per-user document store on redis.

    - profile: a hash, one JSON-encoded field per top-level UserState field, so
      writes merge into the document instead of replacing it.
    - history: a sorted set scored by timestamp; each member is a JSON document
      with its own id, so identical visits are still stored twice.
    """

    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    def profile_exists(self, uid: str) -> bool:
        with _remote_call("profile_exists"):
            return bool(self.r.exists(_user_key(uid)))

    def get_profile(self, uid: str) -> UserState | None:
        with _remote_call("get_profile"):
            raw = self.r.hgetall(_user_key(uid))
            if not raw:
                return None
            data = {k: json.loads(v) for k, v in raw.items()}
            return UserState.model_validate(data)

    def upsert_profile(self, uid: str, state: UserState) -> None:
        mapping = {k: json.dumps(v) for k, v in state.model_dump(mode="json").items()}
        mapping["last_synced"] = json.dumps(datetime.now(tz=UTC).isoformat())
        with _remote_call("upsert_profile"):
            self.r.hset(_user_key(uid), mapping=mapping)
            self.r.sadd(USERS_SET_KEY, uid)

    def add_history_record(self, uid: str, patient: Patient) -> str:
        doc_id = str(uuid4())
        doc = json.dumps({"doc_id": doc_id, "patient": patient.model_dump(mode="json")})
        with _remote_call("add_history_record"):
            self.r.zadd(_history_key(uid), {doc: _record_score(patient)})
        return doc_id

    def query_history(self, uid: str, *, limit: int) -> list[Patient]:
        with _remote_call("query_history"):
            members = self.r.zrange(_history_key(uid), 0, limit - 1, desc=True)
            return [Patient.model_validate(json.loads(m)["patient"]) for m in members]

    def history_size(self, uid: str) -> int:
        with _remote_call("history_size"):
            return int(self.r.zcard(_history_key(uid)))

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Protocol

import redis

from gamestack.api.models import OrchestrationState

STATE_KEY = "gamestack:state"


def _now() -> datetime:
    return datetime.now(tz=UTC)


class StateStore(Protocol):
    """Holds the single orchestration record.

    Every read and write hands out an independent deep copy, so callers can
    never mutate a mapping shared with the stored record.
    """

    def get(self) -> OrchestrationState:  # pragma: no cover
        ...

    def set(self, state: OrchestrationState) -> OrchestrationState:  # pragma: no cover
        ...


class MemoryStateStore:
    def __init__(self, initial: OrchestrationState | None = None) -> None:
        self._lock = threading.Lock()
        self._state = (initial or OrchestrationState()).model_copy(deep=True)

    def get(self) -> OrchestrationState:
        with self._lock:
            return self._state.model_copy(deep=True)

    def set(self, state: OrchestrationState) -> OrchestrationState:
        stored = state.model_copy(deep=True, update={"updated_at": _now()})
        with self._lock:
            self._state = stored
            return stored.model_copy(deep=True)


class RedisStateStore:
    """Redis-backed store so the record survives controller restarts.

    The record is one JSON document; each get/set round-trips through JSON,
    which gives the same copy semantics as the in-memory store.
    """

    def __init__(self, *, r: redis.Redis, key: str = STATE_KEY) -> None:
        self._r = r
        self._key = key

    def get(self) -> OrchestrationState:
        raw = self._r.get(self._key)
        if not raw:
            return OrchestrationState()
        return OrchestrationState.model_validate_json(raw)

    def set(self, state: OrchestrationState) -> OrchestrationState:
        stored = state.model_copy(deep=True, update={"updated_at": _now()})
        self._r.set(self._key, stored.model_dump_json())
        return stored.model_copy(deep=True)

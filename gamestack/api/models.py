from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class WorkloadType(StrEnum):
    minecraft = "minecraft"
    hytale = "hytale"


class Phase(StrEnum):
    stopped = "stopped"
    running = "running"
    switching = "switching"
    error = "error"


def _now() -> datetime:
    return datetime.now(tz=UTC)


class OrchestrationState(BaseModel):
    # Workload keys are plain strings so adapters beyond WorkloadType can register.
    active_workload: str | None = None
    phase: Phase = Phase.stopped

    # Only the latest backup per workload is kept.
    last_backups: dict[str, str] = Field(default_factory=dict)

    # Remembered source locators, synced back on stop/retire.
    source_by_game: dict[str, str] = Field(default_factory=dict)

    # Stamped by the state store on every write.
    updated_at: datetime = Field(default_factory=_now)


class StartRequest(BaseModel):
    workload: str = Field(..., min_length=1)
    source_locator: str | None = None


class SwitchRequest(BaseModel):
    workload: str = Field(..., min_length=1)


class CommandRequest(BaseModel):
    command: str = Field(..., min_length=1, max_length=4000)


class StartResult(BaseModel):
    started: str
    source: Literal["data_url", "backup"]
    backup: str | None = None
    data_url: str | None = None


class StopResult(BaseModel):
    stopped: bool
    backup: str
    synced: bool = False
    data_url: str | None = None


class SwitchResult(BaseModel):
    switched_to: str


class BackupResult(BaseModel):
    backup: str


class CommandResult(BaseModel):
    sent: bool

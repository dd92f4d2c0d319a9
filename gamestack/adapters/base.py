from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from gamestack.core.context import OperationContext
from gamestack.errors import UnsupportedCapabilityError


@runtime_checkable
class WorkloadAdapter(Protocol):
    """Capabilities every workload type implements."""

    workload: str

    def start(self, ctx: OperationContext) -> None:  # pragma: no cover
        ...

    def stop(self, ctx: OperationContext) -> None:  # pragma: no cover
        ...

    def backup(self, ctx: OperationContext) -> str:  # pragma: no cover
        ...

    def restore(self, ctx: OperationContext, backup_ref: str) -> None:  # pragma: no cover
        ...

    def send_command(self, ctx: OperationContext, command: str) -> None:  # pragma: no cover
        ...

    def status(self, ctx: OperationContext) -> dict[str, Any]:  # pragma: no cover
        ...


@runtime_checkable
class SourceSeeder(Protocol):
    def seed_from_source(self, ctx: OperationContext, locator: str) -> None:  # pragma: no cover
        ...


@runtime_checkable
class SourceSyncer(Protocol):
    def sync_to_source(self, ctx: OperationContext, locator: str) -> bool:  # pragma: no cover
        ...


@runtime_checkable
class LatestBackupProvider(Protocol):
    def latest_backup(self, ctx: OperationContext) -> str:  # pragma: no cover
        ...


@dataclass(frozen=True, slots=True)
class AdapterRegistration:
    """An adapter plus the extended capabilities it declared.

    Capabilities are resolved once, when the adapter is registered, rather
    than probed on every call.
    """

    adapter: WorkloadAdapter
    seeder: SourceSeeder | None = None
    syncer: SourceSyncer | None = None
    latest: LatestBackupProvider | None = None

    @classmethod
    def from_adapter(cls, adapter: WorkloadAdapter) -> AdapterRegistration:
        return cls(
            adapter=adapter,
            seeder=adapter if isinstance(adapter, SourceSeeder) else None,
            syncer=adapter if isinstance(adapter, SourceSyncer) else None,
            latest=adapter if isinstance(adapter, LatestBackupProvider) else None,
        )

    @property
    def workload(self) -> str:
        return str(self.adapter.workload)

    def require_seeder(self) -> SourceSeeder:
        if self.seeder is None:
            raise UnsupportedCapabilityError(f"workload {self.workload} cannot seed from a source")
        return self.seeder

    def require_syncer(self) -> SourceSyncer:
        if self.syncer is None:
            raise UnsupportedCapabilityError(f"workload {self.workload} cannot sync to a source")
        return self.syncer

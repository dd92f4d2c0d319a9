"""Orchestrator: keeps exactly one workload running.

Every mutating operation (start, stop, switch, backup, command) runs under a
single FIFO operation lock, so workflows never overlap. Status is lock-free
and reads an independent snapshot from the state store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from gamestack.adapters.base import AdapterRegistration, WorkloadAdapter
from gamestack.api.models import OrchestrationState, StartResult, StopResult, SwitchResult
from gamestack.core.context import OperationContext
from gamestack.errors import NoActiveWorkloadError, UnknownWorkloadError
from gamestack.fsm import apply_phase
from gamestack.lock import OperationLock, operation_lock
from gamestack.state_store import StateStore
from gamestack.workflows import resolve_backup, retire_workload, switch_workflow

logger = logging.getLogger(__name__)


class Controller:
    def __init__(
        self,
        *,
        store: StateStore,
        adapters: Iterable[WorkloadAdapter],
        lock: OperationLock | None = None,
    ) -> None:
        self._store = store
        self._lock = lock or OperationLock()
        self._registry: dict[str, AdapterRegistration] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: WorkloadAdapter) -> AdapterRegistration:
        reg = AdapterRegistration.from_adapter(adapter)
        if reg.workload in self._registry:
            raise ValueError(f"workload already registered: {reg.workload}")
        self._registry[reg.workload] = reg
        return reg

    @property
    def workloads(self) -> list[str]:
        return sorted(self._registry)

    def _registration(self, workload: str) -> AdapterRegistration:
        reg = self._registry.get((workload or "").strip())
        if reg is None:
            raise UnknownWorkloadError(workload)
        return reg

    def _require_active(self, state: OrchestrationState) -> AdapterRegistration:
        if not state.active_workload:
            raise NoActiveWorkloadError()
        return self._registration(state.active_workload)

    # ------------------------------------------------------------------
    # mutating operations
    # ------------------------------------------------------------------
    def start(self, ctx: OperationContext, workload: str, source_locator: str | None = None) -> StartResult:
        target = self._registration(workload)

        with operation_lock(self._lock, ctx):
            st = self._store.get()

            # Only one stack runs: retire whatever else is active first.
            if st.active_workload and st.active_workload != target.workload:
                previous = self._registration(st.active_workload)
                retire_workload(ctx, previous, st)
                st = self._store.set(st)

            locator = (source_locator or "").strip()
            if locator:
                target.require_seeder().seed_from_source(ctx, locator)
                st.source_by_game[target.workload] = locator
                result = StartResult(started=target.workload, source="data_url", data_url=locator)
            else:
                backup_ref = resolve_backup(ctx, target, st)
                target.adapter.restore(ctx, backup_ref)
                result = StartResult(started=target.workload, source="backup", backup=backup_ref)

            target.adapter.start(ctx)

            st.active_workload = target.workload
            apply_phase(st, "mark_running")
            self._store.set(st)

        logger.info("start complete workload=%s source=%s", target.workload, result.source)
        return result

    def stop(self, ctx: OperationContext) -> StopResult:
        with operation_lock(self._lock, ctx):
            st = self._store.get()
            reg = self._require_active(st)
            workload = reg.workload

            reg.adapter.stop(ctx)
            backup_ref = reg.adapter.backup(ctx)
            st.last_backups[workload] = backup_ref
            st = self._store.set(st)

            result = StopResult(stopped=True, backup=backup_ref, synced=False)
            locator = st.source_by_game.get(workload, "").strip()
            if locator:
                reg.require_syncer().sync_to_source(ctx, locator)
                result.synced = True
                result.data_url = locator

            st.active_workload = None
            apply_phase(st, "mark_stopped")
            self._store.set(st)

        logger.info("stop complete workload=%s backup=%s synced=%s", workload, backup_ref, result.synced)
        return result

    def switch(self, ctx: OperationContext, workload: str) -> SwitchResult:
        target = self._registration(workload)

        with operation_lock(self._lock, ctx):
            st = self._store.get()
            if st.active_workload == target.workload:
                return SwitchResult(switched_to=target.workload)

            outgoing = st.active_workload
            apply_phase(st, "begin_switch")
            st = self._store.set(st)

            try:
                outgoing_reg = self._registration(outgoing) if outgoing else None
                backup_ref = switch_workflow(ctx, outgoing_reg, target)
            except Exception:
                apply_phase(st, "mark_error")
                self._store.set(st)
                logger.warning("switch failed from=%s to=%s", outgoing, target.workload)
                raise

            if outgoing and backup_ref:
                st.last_backups[outgoing] = backup_ref
            st.active_workload = target.workload
            apply_phase(st, "mark_running")
            self._store.set(st)

        logger.info("switch complete from=%s to=%s backup=%s", outgoing, target.workload, backup_ref)
        return SwitchResult(switched_to=target.workload)

    def backup(self, ctx: OperationContext) -> str:
        with operation_lock(self._lock, ctx):
            reg = self._require_active(self._store.get())
            return reg.adapter.backup(ctx)

    def command(self, ctx: OperationContext, command: str) -> None:
        with operation_lock(self._lock, ctx):
            reg = self._require_active(self._store.get())
            reg.adapter.send_command(ctx, command)

    # ------------------------------------------------------------------
    # read-only
    # ------------------------------------------------------------------
    def state(self) -> OrchestrationState:
        return self._store.get()

    def status(self, ctx: OperationContext) -> dict[str, Any]:
        st = self._store.get()
        out: dict[str, Any] = st.model_dump(mode="json")

        reg = self._registry.get(st.active_workload) if st.active_workload else None
        if reg is not None:
            try:
                out["workload_status"] = reg.adapter.status(ctx)
            except Exception as e:
                # Best-effort: a live status failure never fails the call.
                logger.warning("workload status failed workload=%s err=%s", reg.workload, e)
        return out

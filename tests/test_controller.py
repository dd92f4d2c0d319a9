from __future__ import annotations

import random
import threading
import time

import pytest

from gamestack.adapters.hytale import HytaleAdapter
from gamestack.api.models import OrchestrationState, Phase
from gamestack.controller import Controller
from gamestack.core.context import OperationContext
from gamestack.errors import (
    DeadlineExceededError,
    InfrastructureError,
    NoActiveWorkloadError,
    NoBackupAvailableError,
    UnknownWorkloadError,
    UnsupportedCapabilityError,
)
from gamestack.state_store import MemoryStateStore
from tests.fakes import LatestAdapter, RecordingAdapter, SourceAdapter

Calls = list[tuple[str, str]]


def _seeded_store(**fields: object) -> MemoryStateStore:
    return MemoryStateStore(OrchestrationState(**fields))  # type: ignore[arg-type]


# ----------------------------------------------------------------------
# start
# ----------------------------------------------------------------------
def test_start_restores_cached_backup_then_starts(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(last_backups={"alpha": "s3://bucket/alpha/0.zip"})
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls)])

    result = controller.start(ctx, "alpha")

    assert result.started == "alpha"
    assert result.source == "backup"
    assert result.backup == "s3://bucket/alpha/0.zip"
    assert calls == [("alpha", "restore"), ("alpha", "start")]

    st = controller.state()
    assert st.active_workload == "alpha"
    assert st.phase == Phase.running


def test_start_without_any_backup_fails_before_side_effects(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters

    with pytest.raises(NoBackupAvailableError):
        controller.start(OperationContext.background(), "alpha")

    assert calls == []
    st = controller.state()
    assert st.active_workload is None
    assert st.phase == Phase.stopped


def test_start_uses_latest_backup_provider_and_caches_it(calls: Calls, ctx: OperationContext) -> None:
    adapter = LatestAdapter("alpha", calls, latest="s3://bucket/alpha/latest.zip")
    controller = Controller(store=MemoryStateStore(), adapters=[adapter])

    result = controller.start(ctx, "alpha")

    assert result.backup == "s3://bucket/alpha/latest.zip"
    assert calls == [("alpha", "latest"), ("alpha", "restore"), ("alpha", "start")]
    assert controller.state().last_backups == {"alpha": "s3://bucket/alpha/latest.zip"}


def test_start_with_missing_latest_marker_is_no_backup(calls: Calls, ctx: OperationContext) -> None:
    controller = Controller(store=MemoryStateStore(), adapters=[LatestAdapter("alpha", calls)])

    with pytest.raises(NoBackupAvailableError):
        controller.start(ctx, "alpha")
    assert ("alpha", "restore") not in calls


def test_start_propagates_other_latest_backup_failures(calls: Calls, ctx: OperationContext) -> None:
    adapter = LatestAdapter("alpha", calls, fail_on={"latest"}, latest="s3://x/y.zip")
    controller = Controller(store=MemoryStateStore(), adapters=[adapter])

    with pytest.raises(InfrastructureError):
        controller.start(ctx, "alpha")


def test_start_from_source_seeds_and_remembers_locator(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters

    result = controller.start(OperationContext.background(), "alpha", "  https://git.example/alpha.git  ")

    assert result.source == "data_url"
    assert result.data_url == "https://git.example/alpha.git"
    assert result.backup is None
    assert calls == [("alpha", "seed"), ("alpha", "start")]
    assert controller.state().source_by_game == {"alpha": "https://git.example/alpha.git"}


def test_start_from_source_requires_seeding_capability(calls: Calls, ctx: OperationContext) -> None:
    controller = Controller(store=MemoryStateStore(), adapters=[RecordingAdapter("alpha", calls)])

    with pytest.raises(UnsupportedCapabilityError):
        controller.start(ctx, "alpha", "https://git.example/alpha.git")
    assert calls == []


def test_start_other_workload_retires_active_one_first(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters
    ctx = OperationContext.background()

    controller.start(ctx, "alpha", "https://git.example/alpha.git")
    calls.clear()

    result = controller.start(ctx, "beta", "https://git.example/beta.git")

    assert result.started == "beta"
    assert calls == [
        ("alpha", "stop"),
        ("alpha", "backup"),
        ("alpha", "sync"),
        ("beta", "seed"),
        ("beta", "start"),
    ]
    st = controller.state()
    assert st.active_workload == "beta"
    assert st.phase == Phase.running
    assert st.last_backups == {"alpha": "s3://bucket/alpha/1.zip"}
    assert st.source_by_game == {
        "alpha": "https://git.example/alpha.git",
        "beta": "https://git.example/beta.git",
    }


def test_start_after_retire_restores_the_fresh_backup(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters
    ctx = OperationContext.background()

    controller.start(ctx, "alpha", "https://git.example/alpha.git")
    controller.start(ctx, "beta", "https://git.example/beta.git")
    calls.clear()

    result = controller.start(ctx, "alpha")

    assert result.source == "backup"
    assert result.backup == "s3://bucket/alpha/1.zip"
    assert calls == [
        ("beta", "stop"),
        ("beta", "backup"),
        ("beta", "sync"),
        ("alpha", "restore"),
        ("alpha", "start"),
    ]


def test_retire_is_persisted_even_when_target_fails(calls: Calls, ctx: OperationContext) -> None:
    alpha = SourceAdapter("alpha", calls)
    beta = SourceAdapter("beta", calls, fail_on={"restore"})
    store = _seeded_store(active_workload="alpha", phase=Phase.running, last_backups={"beta": "s3://b/beta.zip"})
    controller = Controller(store=store, adapters=[alpha, beta])

    with pytest.raises(InfrastructureError):
        controller.start(ctx, "beta")

    st = controller.state()
    assert st.active_workload is None
    assert st.phase == Phase.stopped
    assert st.last_backups["alpha"] == "s3://bucket/alpha/1.zip"


def test_failed_retire_leaves_previous_workload_active(calls: Calls, ctx: OperationContext) -> None:
    alpha = SourceAdapter("alpha", calls, fail_on={"stop"})
    beta = SourceAdapter("beta", calls)
    store = _seeded_store(active_workload="alpha", phase=Phase.running, last_backups={"beta": "s3://b/beta.zip"})
    controller = Controller(store=store, adapters=[alpha, beta])

    with pytest.raises(InfrastructureError):
        controller.start(ctx, "beta")

    assert ("beta", "start") not in calls
    assert controller.state().active_workload == "alpha"


def test_start_of_already_active_workload_restarts_without_retire(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running, last_backups={"alpha": "s3://b/a.zip"})
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls)])

    controller.start(ctx, "alpha")

    assert calls == [("alpha", "restore"), ("alpha", "start")]
    assert controller.state().active_workload == "alpha"


def test_unknown_workload_is_rejected(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters
    ctx = OperationContext.background()

    with pytest.raises(UnknownWorkloadError):
        controller.start(ctx, "gamma")
    with pytest.raises(UnknownWorkloadError):
        controller.switch(ctx, "")
    assert calls == []


# ----------------------------------------------------------------------
# stop
# ----------------------------------------------------------------------
def test_stop_without_active_workload(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters
    with pytest.raises(NoActiveWorkloadError):
        controller.stop(OperationContext.background())
    assert calls == []


def test_stop_backs_up_and_syncs_remembered_source(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters
    ctx = OperationContext.background()
    controller.start(ctx, "alpha", "https://git.example/alpha.git")
    calls.clear()

    result = controller.stop(ctx)

    assert result.stopped is True
    assert result.backup == "s3://bucket/alpha/1.zip"
    assert result.synced is True
    assert result.data_url == "https://git.example/alpha.git"
    assert calls == [("alpha", "stop"), ("alpha", "backup"), ("alpha", "sync")]

    st = controller.state()
    assert st.active_workload is None
    assert st.phase == Phase.stopped
    assert st.last_backups == {"alpha": "s3://bucket/alpha/1.zip"}


def test_stop_without_source_does_not_sync(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls)])

    result = controller.stop(ctx)

    assert result.synced is False
    assert result.data_url is None
    assert calls == [("alpha", "stop"), ("alpha", "backup")]


def test_failed_sync_keeps_backup_but_leaves_workload_active(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(
        active_workload="alpha",
        phase=Phase.running,
        source_by_game={"alpha": "https://git.example/alpha.git"},
    )
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls, fail_on={"sync"})])

    with pytest.raises(InfrastructureError):
        controller.stop(ctx)

    st = controller.state()
    assert st.last_backups == {"alpha": "s3://bucket/alpha/1.zip"}
    assert st.active_workload == "alpha"


# ----------------------------------------------------------------------
# switch
# ----------------------------------------------------------------------
def test_switch_to_active_workload_is_noop(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls)])

    before = controller.state()

    assert controller.switch(ctx, "alpha").switched_to == "alpha"
    assert calls == []
    assert controller.state() == before


def test_switch_backs_up_outgoing_and_starts_target_without_restore(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(
        active_workload="alpha",
        phase=Phase.running,
        source_by_game={"alpha": "https://git.example/alpha.git"},
    )
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls), SourceAdapter("beta", calls)])

    assert controller.switch(ctx, "beta").switched_to == "beta"

    # No source sync for the outgoing workload and no restore for the target.
    assert calls == [("alpha", "stop"), ("alpha", "backup"), ("beta", "start")]
    st = controller.state()
    assert st.active_workload == "beta"
    assert st.phase == Phase.running
    assert st.last_backups == {"alpha": "s3://bucket/alpha/1.zip"}


def test_switch_from_nothing_just_starts_target(calls: Calls, controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters

    controller.switch(OperationContext.background(), "beta")

    assert calls == [("beta", "start")]
    assert controller.state().active_workload == "beta"


def test_failed_switch_marks_error_phase(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    alpha = SourceAdapter("alpha", calls)
    beta = SourceAdapter("beta", calls, fail_on={"start"})
    controller = Controller(store=store, adapters=[alpha, beta])

    with pytest.raises(InfrastructureError):
        controller.switch(ctx, "beta")

    st = controller.state()
    assert st.phase == Phase.error
    assert st.active_workload == "alpha"


# ----------------------------------------------------------------------
# backup / command / status
# ----------------------------------------------------------------------
def test_backup_and_command_require_active_workload(controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters
    ctx = OperationContext.background()
    with pytest.raises(NoActiveWorkloadError):
        controller.backup(ctx)
    with pytest.raises(NoActiveWorkloadError):
        controller.command(ctx, "say hi")


def test_backup_returns_ref_without_recording_it(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls)])

    assert controller.backup(ctx) == "s3://bucket/alpha/1.zip"
    assert controller.state().last_backups == {}

    controller.command(ctx, "say hi")
    assert calls == [("alpha", "backup"), ("alpha", "command")]


def test_status_includes_live_workload_status(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls)])

    out = controller.status(ctx)

    assert out["active_workload"] == "alpha"
    assert out["phase"] == "running"
    assert out["workload_status"] == {"adapter": "alpha"}


def test_status_is_best_effort(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    controller = Controller(store=store, adapters=[SourceAdapter("alpha", calls, fail_on={"status"})])

    out = controller.status(ctx)

    assert out["active_workload"] == "alpha"
    assert "workload_status" not in out


def test_state_snapshots_are_independent(controller_and_adapters) -> None:
    controller, _alpha, _beta = controller_and_adapters
    controller.start(OperationContext.background(), "alpha", "https://git.example/alpha.git")

    snap = controller.state()
    snap.source_by_game["alpha"] = "mutated"
    snap.active_workload = "beta"

    st = controller.state()
    assert st.source_by_game["alpha"] == "https://git.example/alpha.git"
    assert st.active_workload == "alpha"


def test_duplicate_registration_is_rejected(calls: Calls) -> None:
    with pytest.raises(ValueError):
        Controller(store=MemoryStateStore(), adapters=[SourceAdapter("alpha", calls), SourceAdapter("alpha", calls)])


# ----------------------------------------------------------------------
# serialization of mutating operations
# ----------------------------------------------------------------------
def test_stop_waits_for_in_flight_backup(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    alpha = SourceAdapter("alpha", calls)
    gate = threading.Event()
    alpha.gates["backup"] = gate
    alpha.entered["backup"] = threading.Event()
    controller = Controller(store=store, adapters=[alpha])

    backup_thread = threading.Thread(target=controller.backup, args=(ctx,))
    backup_thread.start()
    assert alpha.entered["backup"].wait(timeout=5)

    stop_thread = threading.Thread(target=controller.stop, args=(ctx,))
    stop_thread.start()
    time.sleep(0.1)
    assert ("alpha", "stop") not in calls

    gate.set()
    backup_thread.join(timeout=5)
    stop_thread.join(timeout=5)

    assert calls == [("alpha", "backup"), ("alpha", "stop"), ("alpha", "backup")]
    assert controller.state().active_workload is None


def test_waiting_operation_gives_up_at_its_deadline(calls: Calls, ctx: OperationContext) -> None:
    store = _seeded_store(active_workload="alpha", phase=Phase.running)
    alpha = SourceAdapter("alpha", calls)
    gate = threading.Event()
    alpha.gates["backup"] = gate
    alpha.entered["backup"] = threading.Event()
    controller = Controller(store=store, adapters=[alpha])

    holder = threading.Thread(target=controller.backup, args=(ctx,))
    holder.start()
    assert alpha.entered["backup"].wait(timeout=5)

    with pytest.raises(DeadlineExceededError):
        controller.command(OperationContext.with_deadline_in(0.1), "say hi")

    gate.set()
    holder.join(timeout=5)
    assert ("alpha", "command") not in calls


def test_full_lifecycle_with_stub_adapters(ctx: OperationContext) -> None:
    controller = Controller(
        store=MemoryStateStore(),
        adapters=[HytaleAdapter(workload="alpha"), HytaleAdapter(workload="beta")],
    )

    controller.start(ctx, "alpha", "https://git.example/alpha.git")
    controller.start(ctx, "beta", "https://git.example/beta.git")
    stopped = controller.stop(ctx)
    restarted = controller.start(ctx, "alpha")

    st = controller.state()
    assert stopped.synced is True
    assert restarted.source == "backup"
    assert restarted.backup == st.last_backups["alpha"]
    assert st.last_backups["beta"] == stopped.backup
    assert st.active_workload == "alpha"


# ----------------------------------------------------------------------
# end-to-end properties
# ----------------------------------------------------------------------
def test_alpha_beta_scenario(ctx: OperationContext) -> None:
    controller = Controller(
        store=MemoryStateStore(),
        adapters=[HytaleAdapter(workload="alpha"), HytaleAdapter(workload="beta")],
    )

    with pytest.raises(NoBackupAvailableError, match="no backup available"):
        controller.start(ctx, "alpha")
    with pytest.raises(NoActiveWorkloadError, match="no active workload"):
        controller.backup(ctx)

    controller.start(ctx, "alpha", "https://git.example/seed.git")
    status = controller.status(ctx)
    assert status["active_workload"] == "alpha"
    assert status["phase"] == "running"

    controller.switch(ctx, "beta")
    status = controller.status(ctx)
    assert status["active_workload"] == "beta"
    assert status["phase"] == "running"
    assert status["last_backups"]["alpha"]


class _RunningTracker(SourceAdapter):
    """Double that records which workloads are running at every call."""

    def __init__(self, workload: str, calls: Calls, running: set[str], peak: list[int]) -> None:
        super().__init__(workload, calls)
        self.running = running
        self.peak = peak

    def start(self, ctx: OperationContext) -> None:
        super().start(ctx)
        self.running.add(self.workload)
        self.peak[0] = max(self.peak[0], len(self.running))

    def stop(self, ctx: OperationContext) -> None:
        super().stop(ctx)
        self.running.discard(self.workload)


def test_at_most_one_workload_runs_across_random_sequences() -> None:
    rng = random.Random(1234)
    for _ in range(50):
        calls: Calls = []
        running: set[str] = set()
        peak = [0]
        names = ["alpha", "beta", "gamma"]
        controller = Controller(
            store=MemoryStateStore(OrchestrationState(last_backups={n: f"s3://b/{n}.zip" for n in names})),
            adapters=[_RunningTracker(n, calls, running, peak) for n in names],
        )
        ctx = OperationContext.background()

        for _ in range(12):
            op = rng.choice(["start", "stop", "switch"])
            try:
                if op == "start":
                    controller.start(ctx, rng.choice(names))
                elif op == "stop":
                    controller.stop(ctx)
                else:
                    controller.switch(ctx, rng.choice(names))
            except NoActiveWorkloadError:
                pass

            active = controller.state().active_workload
            assert running == ({active} if active else set())

        assert peak[0] <= 1

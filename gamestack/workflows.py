"""Multi-step workflows driven by the controller.

Each function runs with the controller's operation lock already held and
touches only the adapters it is given.
"""

from __future__ import annotations

import logging

from gamestack.adapters.base import AdapterRegistration
from gamestack.api.models import OrchestrationState
from gamestack.core.context import OperationContext
from gamestack.errors import (
    ConfigurationError,
    InvalidBackupRefError,
    NoBackupAvailableError,
    ObjectNotFoundError,
)
from gamestack.fsm import apply_phase

logger = logging.getLogger(__name__)


def retire_workload(ctx: OperationContext, reg: AdapterRegistration, state: OrchestrationState) -> str:
    """Stop, back up and (when a source is remembered) sync the active workload.

    Updates `state` in place: the new backup is recorded, the workload is no
    longer active and the phase is stopped. Returns the backup reference.
    """

    workload = reg.workload
    logger.info("retiring workload=%s", workload)

    reg.adapter.stop(ctx)
    backup_ref = reg.adapter.backup(ctx)
    state.last_backups[workload] = backup_ref

    locator = state.source_by_game.get(workload, "").strip()
    if locator:
        reg.require_syncer().sync_to_source(ctx, locator)

    state.active_workload = None
    apply_phase(state, "mark_stopped")
    logger.info("retired workload=%s backup=%s synced=%s", workload, backup_ref, bool(locator))
    return backup_ref


def resolve_backup(ctx: OperationContext, reg: AdapterRegistration, state: OrchestrationState) -> str:
    """Pick the backup to restore: the cached reference, else the adapter's latest.

    "Nothing there yet" outcomes become NoBackupAvailableError; any other
    failure propagates as-is.
    """

    workload = reg.workload
    cached = state.last_backups.get(workload, "").strip()
    if cached:
        return cached

    if reg.latest is None:
        raise NoBackupAvailableError(workload)

    try:
        ref = reg.latest.latest_backup(ctx).strip()
    except (ObjectNotFoundError, ConfigurationError, InvalidBackupRefError) as e:
        raise NoBackupAvailableError(workload) from e
    if not ref:
        raise NoBackupAvailableError(workload)

    state.last_backups[workload] = ref
    return ref


def switch_workflow(
    ctx: OperationContext,
    outgoing: AdapterRegistration | None,
    target: AdapterRegistration,
) -> str | None:
    """Stop and back up `outgoing` (no source sync), then start `target`.

    The target is started as-is; no restore is performed for it.
    """

    backup_ref: str | None = None
    if outgoing is not None:
        outgoing.adapter.stop(ctx)
        backup_ref = outgoing.adapter.backup(ctx)

    target.adapter.start(ctx)
    return backup_ref

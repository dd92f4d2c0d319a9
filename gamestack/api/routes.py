from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from gamestack.api.deps import get_controller, get_operation_context
from gamestack.api.models import (
    BackupResult,
    CommandRequest,
    CommandResult,
    StartRequest,
    StartResult,
    StopResult,
    SwitchRequest,
    SwitchResult,
)
from gamestack.controller import Controller
from gamestack.core.context import OperationContext
from gamestack.errors import (
    ConfigurationError,
    GameStackError,
    InvalidInputError,
    NoActiveWorkloadError,
    NoBackupAvailableError,
    OperationCancelledError,
    OperationTimeoutError,
    UnknownWorkloadError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Checked in order; the first matching kind wins.
_STATUS_BY_ERROR: tuple[tuple[type[GameStackError], int], ...] = (
    (UnknownWorkloadError, status.HTTP_400_BAD_REQUEST),
    (NoBackupAvailableError, status.HTTP_400_BAD_REQUEST),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (NoActiveWorkloadError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_501_NOT_IMPLEMENTED),
    (OperationTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (OperationCancelledError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: GameStackError) -> HTTPException:
    for kind, code in _STATUS_BY_ERROR:
        if isinstance(exc, kind):
            return HTTPException(status_code=code, detail=str(exc))

    logger.error("internal error: %s", exc, exc_info=exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal server error")


@router.get("/healthz")
def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/v1/status")
def status_route(
    controller: Controller = Depends(get_controller),
    ctx: OperationContext = Depends(get_operation_context),
) -> dict[str, Any]:
    return controller.status(ctx)


@router.post("/v1/server/start", response_model=StartResult, response_model_exclude_none=True)
def start_route(
    payload: StartRequest,
    controller: Controller = Depends(get_controller),
    ctx: OperationContext = Depends(get_operation_context),
) -> StartResult:
    try:
        return controller.start(ctx, payload.workload, payload.source_locator)
    except GameStackError as e:
        raise http_error(e) from e


@router.post("/v1/server/stop", response_model=StopResult, response_model_exclude_none=True)
def stop_route(
    controller: Controller = Depends(get_controller),
    ctx: OperationContext = Depends(get_operation_context),
) -> StopResult:
    try:
        return controller.stop(ctx)
    except GameStackError as e:
        raise http_error(e) from e


@router.post("/v1/server/switch", response_model=SwitchResult)
def switch_route(
    payload: SwitchRequest,
    controller: Controller = Depends(get_controller),
    ctx: OperationContext = Depends(get_operation_context),
) -> SwitchResult:
    try:
        return controller.switch(ctx, payload.workload)
    except GameStackError as e:
        raise http_error(e) from e


@router.post("/v1/server/backup", response_model=BackupResult)
def backup_route(
    controller: Controller = Depends(get_controller),
    ctx: OperationContext = Depends(get_operation_context),
) -> BackupResult:
    try:
        return BackupResult(backup=controller.backup(ctx))
    except GameStackError as e:
        raise http_error(e) from e


@router.post("/v1/server/command", response_model=CommandResult)
def command_route(
    payload: CommandRequest,
    controller: Controller = Depends(get_controller),
    ctx: OperationContext = Depends(get_operation_context),
) -> CommandResult:
    if not payload.command.strip():
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="missing field: command")
    try:
        controller.command(ctx, payload.command)
    except GameStackError as e:
        raise http_error(e) from e
    return CommandResult(sent=True)

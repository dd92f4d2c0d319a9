from __future__ import annotations

from collections.abc import Generator

from fastapi import Request

from gamestack.controller import Controller
from gamestack.core.context import OperationContext


def get_controller(request: Request) -> Controller:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise RuntimeError("Controller not initialized. It is built at application startup.")
    return controller


def get_operation_context(request: Request) -> Generator[OperationContext, None, None]:
    """One context per request, bounded by the configured operation timeout."""

    timeout = getattr(request.app.state, "operation_timeout", None)
    ctx = OperationContext.with_deadline_in(timeout) if timeout else OperationContext.background()
    try:
        yield ctx
    finally:
        # Anything still running on behalf of this request is abandoned.
        ctx.cancel()

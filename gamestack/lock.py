from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager

from gamestack.core.context import OperationContext

# Upper bound on a single condition wait, so waiters notice cancellation.
_WAIT_SLICE_SECONDS = 0.05


class OperationLock:
    """Process-wide single-slot lock with FIFO hand-off.

    Waiters queue in arrival order and the head of the queue holds the lock.
    A waiter whose context is cancelled (or whose deadline passes) leaves the
    queue and raises, so cancellation can never strand the lock.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: deque[object] = deque()

    @property
    def locked(self) -> bool:
        with self._cond:
            return bool(self._queue)

    def acquire(self, ctx: OperationContext) -> object:
        ticket = object()
        with self._cond:
            self._queue.append(ticket)
            try:
                while self._queue[0] is not ticket:
                    ctx.check()
                    timeout = _WAIT_SLICE_SECONDS
                    rem = ctx.remaining()
                    if rem is not None:
                        timeout = min(timeout, rem)
                    self._cond.wait(timeout)
            except BaseException:
                self._queue.remove(ticket)
                self._cond.notify_all()
                raise
        return ticket

    def release(self, ticket: object) -> None:
        with self._cond:
            if not self._queue or self._queue[0] is not ticket:
                raise RuntimeError("release of an operation lock that is not held")
            self._queue.popleft()
            self._cond.notify_all()


@contextmanager
def operation_lock(lock: OperationLock, ctx: OperationContext) -> Iterator[None]:
    """Hold `lock` for the duration of one mutating workflow."""

    ticket = lock.acquire(ctx)
    try:
        yield
    finally:
        lock.release(ticket)

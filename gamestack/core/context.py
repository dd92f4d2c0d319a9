from __future__ import annotations

import threading
import time
import weakref

from gamestack.errors import DeadlineExceededError, OperationCancelledError


class OperationContext:
    """Cancellable, deadline-bearing context passed to every blocking call.

    - `deadline` is a `time.monotonic()` instant, or None for no deadline.
    - Contexts derived with `with_timeout` inherit the parent's deadline (the
      earlier one wins) and are cancelled when the parent is cancelled. The
      parent holds them weakly, so finished children are dropped.
    - `wait` sleeps interruptibly: cancellation wakes it up immediately.
    """

    def __init__(self, *, deadline: float | None = None) -> None:
        self._deadline = deadline
        self._done = threading.Event()
        self._children: weakref.WeakSet[OperationContext] = weakref.WeakSet()
        self._lock = threading.Lock()

    @classmethod
    def background(cls) -> OperationContext:
        return cls()

    @classmethod
    def with_deadline_in(cls, seconds: float) -> OperationContext:
        return cls(deadline=time.monotonic() + seconds)

    def with_timeout(self, seconds: float) -> OperationContext:
        deadline = time.monotonic() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)

        child = OperationContext(deadline=deadline)
        with self._lock:
            if self._done.is_set():
                child.cancel()
            else:
                self._children.add(child)
        return child

    def cancel(self) -> None:
        with self._lock:
            self._done.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel()

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._done.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def check(self) -> None:
        if self._done.is_set():
            raise OperationCancelledError("operation cancelled")
        if self.expired:
            raise DeadlineExceededError("operation deadline exceeded")

    def wait(self, seconds: float) -> None:
        """Sleep for `seconds`, raising early on cancellation or deadline."""

        self.check()
        timeout = max(seconds, 0.0)
        cut_by_deadline = False
        rem = self.remaining()
        if rem is not None and rem <= timeout:
            timeout = rem
            cut_by_deadline = True

        if self._done.wait(timeout):
            raise OperationCancelledError("operation cancelled")
        if cut_by_deadline:
            raise DeadlineExceededError("operation deadline exceeded")

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from gamestack.api.models import WorkloadType
from gamestack.core.context import OperationContext

logger = logging.getLogger(__name__)


class HytaleAdapter:
    """Stub adapter: satisfies the workload contract with in-memory no-ops.

    Stays a stub until official server tooling exists.
    """

    def __init__(self, *, workload: str = WorkloadType.hytale) -> None:
        self.workload = str(workload)
        self._lock = threading.Lock()
        self._running = False
        self._last_backup = ""
        self._last_source = ""

    def start(self, ctx: OperationContext) -> None:
        with self._lock:
            self._running = True
        logger.info("%s start (stub)", self.workload)

    def stop(self, ctx: OperationContext) -> None:
        with self._lock:
            self._running = False
        logger.info("%s stop (stub)", self.workload)

    def backup(self, ctx: OperationContext) -> str:
        stamp = datetime.now(tz=UTC).strftime("%Y%m%d-%H%M%S")
        with self._lock:
            self._last_backup = f"s3://backups/{self.workload}/{stamp}.zip"
            backup = self._last_backup
        logger.info("%s backup (stub) backup=%s", self.workload, backup)
        return backup

    def restore(self, ctx: OperationContext, backup_ref: str) -> None:
        with self._lock:
            self._last_backup = backup_ref
        logger.info("%s restore (stub) backup=%s", self.workload, backup_ref)

    def seed_from_source(self, ctx: OperationContext, locator: str) -> None:
        with self._lock:
            self._last_source = locator
        logger.info("%s seed from source (stub) source=%s", self.workload, locator)

    def sync_to_source(self, ctx: OperationContext, locator: str) -> bool:
        with self._lock:
            self._last_source = locator
        logger.info("%s sync to source (stub) source=%s", self.workload, locator)
        return True

    def send_command(self, ctx: OperationContext, command: str) -> None:
        logger.info("%s command (stub) cmd=%s", self.workload, command)

    def status(self, ctx: OperationContext) -> dict[str, Any]:
        with self._lock:
            return {
                "adapter": self.workload,
                "ready": True,
                "running": self._running,
                "last_backup": self._last_backup,
                "last_source": self._last_source,
                "note": "stub until official tooling exists",
            }

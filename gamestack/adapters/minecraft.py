from __future__ import annotations

import logging
import tempfile
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from gamestack.adapters.archive import reset_directory, unzip_to_directory, validate_archive, zip_directory
from gamestack.adapters.refs import SourceLocator, format_backup_ref, parse_backup_ref
from gamestack.adapters.source_sync import GitIdentity, GitSourceSync
from gamestack.api.models import WorkloadType
from gamestack.core.context import OperationContext
from gamestack.errors import ConfigurationError, GameStackError, InfrastructureError, InvalidBackupRefError
from gamestack.infra.aws_runtime import AwsRuntimeClient
from gamestack.settings import MinecraftSettings

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


class MinecraftAdapter:
    """Real adapter: ECS scaling, S3 zip snapshots, git seed/sync."""

    def __init__(
        self,
        *,
        settings: MinecraftSettings,
        runtime: AwsRuntimeClient | None,
        source_sync: GitSourceSync | None = None,
        clock: Callable[[], datetime] = _now,
        workload: str = WorkloadType.minecraft,
    ) -> None:
        self.workload = str(workload)
        self._settings = settings
        self._runtime = runtime
        self._clock = clock
        self._source_sync = source_sync or GitSourceSync(
            identity=GitIdentity(
                user_name=settings.git_user_name,
                user_email=settings.git_user_email,
                token=settings.git_token,
            )
        )

        self._lock = threading.Lock()
        self._running = False
        self._last_backup = ""
        self._last_source = ""

    @property
    def data_dir(self) -> Path:
        return Path(self._settings.data_dir)

    @property
    def ecs_configured(self) -> bool:
        return bool(self._settings.cluster and self._settings.service and self._runtime is not None)

    @property
    def s3_configured(self) -> bool:
        return bool(self._settings.bucket and self._runtime is not None)

    def _require_storage(self) -> AwsRuntimeClient:
        if not self.s3_configured or self._runtime is None:
            raise ConfigurationError("s3 backup not configured")
        return self._runtime

    # ------------------------------------------------------------------
    # start / stop
    # ------------------------------------------------------------------
    def start(self, ctx: OperationContext) -> None:
        self._scale(ctx, desired=1, force_new_deployment=True)
        with self._lock:
            self._running = True
        logger.info("%s start cluster=%s service=%s", self.workload, self._settings.cluster, self._settings.service)

    def stop(self, ctx: OperationContext) -> None:
        self._scale(ctx, desired=0, force_new_deployment=False)
        with self._lock:
            self._running = False
        logger.info("%s stop cluster=%s service=%s", self.workload, self._settings.cluster, self._settings.service)

    def _scale(self, ctx: OperationContext, *, desired: int, force_new_deployment: bool) -> None:
        if not self.ecs_configured or self._runtime is None:
            # Local mode: no scheduler to drive.
            return
        s = self._settings
        self._runtime.set_service_desired_count(
            ctx, s.cluster, s.service, desired, force_new_deployment=force_new_deployment
        )
        self._runtime.wait_service_stable(ctx, s.cluster, s.service, timeout=s.stable_timeout)

    # ------------------------------------------------------------------
    # backup / restore
    # ------------------------------------------------------------------
    def _key(self, name: str) -> str:
        base = f"{self.workload}/{name}"
        prefix = self._settings.backup_prefix.strip("/")
        return f"{prefix}/{base}" if prefix else base

    def backup_key(self) -> str:
        return self._key(f"{self._clock().strftime('%Y%m%d-%H%M%S')}.zip")

    def latest_backup_key(self) -> str:
        return self._key("latest.txt")

    def backup(self, ctx: OperationContext) -> str:
        runtime = self._require_storage()
        bucket = self._settings.bucket

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InfrastructureError(f"prepare data dir: {e}") from e

        key = self.backup_key()
        with tempfile.TemporaryDirectory(prefix=f"{self.workload}-backup-") as tmp:
            # Build the full archive first; only a finished archive is uploaded.
            tmp_zip = Path(tmp) / "backup.zip"
            entries = zip_directory(self.data_dir, tmp_zip)
            runtime.upload_file(ctx, bucket, key, tmp_zip)

        ref = format_backup_ref(bucket, key)

        # Breadcrumb only; not transactional with the upload above.
        try:
            runtime.put_string(ctx, bucket, self.latest_backup_key(), key)
        except GameStackError as e:
            logger.warning("%s latest marker update failed backup=%s err=%s", self.workload, ref, e)

        with self._lock:
            self._last_backup = ref
        logger.info("%s backup complete backup=%s entries=%s", self.workload, ref, entries)
        return ref

    def restore(self, ctx: OperationContext, backup_ref: str) -> None:
        if not (backup_ref or "").strip():
            raise InvalidBackupRefError("empty backup key")
        runtime = self._require_storage()
        bucket, key = parse_backup_ref(self._settings.bucket, backup_ref)

        with tempfile.TemporaryDirectory(prefix=f"{self.workload}-restore-") as tmp:
            tmp_zip = Path(tmp) / "restore.zip"
            runtime.download_file(ctx, bucket, key, tmp_zip)

            # Reject unsafe archives before the destination is touched.
            validate_archive(tmp_zip)
            reset_directory(self.data_dir)
            entries = unzip_to_directory(tmp_zip, self.data_dir)

        ref = format_backup_ref(bucket, key)
        with self._lock:
            self._last_backup = ref
        logger.info("%s restore complete backup=%s entries=%s", self.workload, ref, entries)

    def latest_backup(self, ctx: OperationContext) -> str:
        with self._lock:
            if self._last_backup.strip():
                return self._last_backup

        runtime = self._require_storage()
        marker = runtime.get_string(ctx, self._settings.bucket, self.latest_backup_key()).strip()
        if not marker:
            raise InvalidBackupRefError("latest backup marker is empty")

        bucket, key = parse_backup_ref(self._settings.bucket, marker)
        ref = format_backup_ref(bucket, key)
        with self._lock:
            self._last_backup = ref
        return ref

    # ------------------------------------------------------------------
    # source seed / sync
    # ------------------------------------------------------------------
    def seed_from_source(self, ctx: OperationContext, locator: str) -> None:
        parsed = SourceLocator.parse(locator)
        self._source_sync.seed(ctx, parsed, self.data_dir)
        with self._lock:
            self._last_source = parsed.raw
        logger.info("%s seed from source complete source=%s", self.workload, parsed)

    def sync_to_source(self, ctx: OperationContext, locator: str) -> bool:
        parsed = SourceLocator.parse(locator)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InfrastructureError(f"prepare data dir: {e}") from e

        changed = self._source_sync.sync(ctx, parsed, self.data_dir, label=self.workload)
        with self._lock:
            self._last_source = parsed.raw
        return changed

    # ------------------------------------------------------------------
    # passthrough
    # ------------------------------------------------------------------
    def send_command(self, ctx: OperationContext, command: str) -> None:
        # No console channel into the container yet; commands are only logged.
        logger.info("%s command cmd=%s", self.workload, command)

    def status(self, ctx: OperationContext) -> dict[str, Any]:
        with self._lock:
            running = self._running
            last_backup = self._last_backup
            last_source = self._last_source

        return {
            "adapter": self.workload,
            "ready": True,
            "running": running,
            "last_backup": last_backup,
            "last_source": last_source,
            "cluster": self._settings.cluster,
            "service": self._settings.service,
            "bucket": self._settings.bucket,
        }

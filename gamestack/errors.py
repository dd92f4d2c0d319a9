"""
Error classes for the gamestack controller.

The kinds below let the request layer map failures to status codes without
parsing messages:
- ConfigurationError: a required setting is absent; nothing was touched.
- ObjectNotFoundError: an object-store key does not exist ("no backup yet").
- InvalidInputError: a reference, locator or archive entry was rejected
  before any side effect.
- InfrastructureError: a scheduler, storage or git call failed.
- OperationTimeoutError: a stabilization wait or the caller's deadline ran out.
- OperationCancelledError: the caller cancelled the operation context.

Errors are exceptions, never return values. Nothing here retries.
"""

from __future__ import annotations


class GameStackError(Exception):
    """Base exception for gamestack."""


class ConfigurationError(GameStackError):
    """A required setting is missing, so the operation is unsupported."""


class UnsupportedCapabilityError(ConfigurationError):
    """The adapter does not implement an extended capability."""


class ObjectNotFoundError(GameStackError):
    """The requested object does not exist in the object store."""

    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(f"object not found: s3://{bucket}/{key}")
        self.bucket = bucket
        self.key = key


class InvalidInputError(GameStackError):
    """Input was rejected before any side effect."""


class InvalidBackupRefError(InvalidInputError):
    pass


class InvalidSourceLocatorError(InvalidInputError):
    pass


class UnsafeArchiveEntryError(InvalidInputError):
    """An archive member would land outside the extraction root."""

    def __init__(self, name: str) -> None:
        super().__init__(f"archive contains invalid path: {name}")
        self.name = name


class InfrastructureError(GameStackError):
    """A call to the scheduler, object store or git failed."""


class OperationTimeoutError(GameStackError, TimeoutError):
    pass


class StabilizationTimeoutError(OperationTimeoutError):
    """The service did not become stable before the wait deadline."""


class DeadlineExceededError(OperationTimeoutError):
    """The caller's operation deadline passed."""


class OperationCancelledError(GameStackError):
    pass


class UnknownWorkloadError(GameStackError):
    def __init__(self, workload: str) -> None:
        super().__init__(f"unknown workload type: {workload}")
        self.workload = workload


class NoActiveWorkloadError(GameStackError):
    def __init__(self) -> None:
        super().__init__("no active workload")


class NoBackupAvailableError(GameStackError):
    def __init__(self, workload: str) -> None:
        super().__init__(f"no backup available for workload: {workload}")
        self.workload = workload

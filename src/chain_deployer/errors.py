"""Error taxonomy for chain-deployer.

Every fatal condition of a deployment run maps to one of these classes.
None of them are retried by the orchestrator: the operator restarts the
process and the persisted state becomes the resume point.
"""

from __future__ import annotations

from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .orchestrator.models import PendingOperation


class DeployerError(RuntimeError):
    """Base class for all chain-deployer errors."""


class ConfigError(DeployerError):
    """Malformed startup input (config file, env var or CLI flag)."""


class CorruptStateError(DeployerError):
    """持久化的状态文件无法解析，不能在此基础上继续"""

    def __init__(self, path: str, cause: Optional[BaseException] = None) -> None:
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"State document {path} is unreadable{detail}")


class PersistenceError(DeployerError):
    """状态无法持久化写入"""

    def __init__(self, path: str, cause: Optional[BaseException] = None) -> None:
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to persist state to {path}{detail}")


class StateConflictError(DeployerError):
    """A delta tried to rewrite an already recorded key with different data."""

    def __init__(self, key: str, existing: Any, new: Any) -> None:
        self.key = key
        self.existing = existing
        self.new = new
        super().__init__(
            f"State key '{key}' is already recorded as {existing!r}, refusing to overwrite with {new!r}"
        )


class StepExecutionError(DeployerError):
    """A step's own precondition or submission failed."""

    def __init__(self, step: str, cause: BaseException) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {cause}")


class ConfirmationTimeoutError(DeployerError):
    """操作在超时时间内未达到所需确认数"""

    def __init__(self, handle: str, timeout: float, depth: int = 0) -> None:
        self.handle = handle
        self.timeout = timeout
        self.depth = depth
        super().__init__(
            f"Operation {handle} reached {depth} confirmation(s) before timing out after {timeout:g}s"
        )


class OperationRejectedError(DeployerError):
    """The confirmation source reported the operation as failed."""

    def __init__(self, handle: str, reason: str = "rejected") -> None:
        self.handle = handle
        self.reason = reason
        super().__init__(f"Operation {handle} failed: {reason}")


class ConfirmationError(DeployerError):
    """Wraps the first operation of a batch that failed to confirm."""

    def __init__(self, operation: "PendingOperation", cause: BaseException) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Confirmation failed for {operation.handle}: {cause}")


class SourceUnavailableError(DeployerError):
    """Transient failure talking to the confirmation source; polling continues."""

"""Data models for the orchestrator module."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, TYPE_CHECKING

from ..errors import StateConflictError

if TYPE_CHECKING:
    from ..errors import DeployerError


class RunStatus(Enum):
    """编排器状态机"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RecoveryState:
    """Append-only mapping of step identifiers to their recorded outcomes.

    Keys are never overwritten with different data; writing an identical
    value again is accepted so that idempotent steps can be replayed.
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(data or {}))

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RecoveryState):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"RecoveryState({self._data!r})"

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._data.get(key, default))

    def check_merge(self, delta: Mapping[str, Any]) -> None:
        """Raise StateConflictError if `delta` contradicts a recorded key."""
        for key, value in delta.items():
            if key in self._data and self._data[key] != value:
                raise StateConflictError(key, self._data[key], value)

    def merge(self, delta: Mapping[str, Any]) -> "RecoveryState":
        """返回合并后的新状态（原状态不变）"""
        self.check_merge(delta)
        merged = dict(self._data)
        merged.update(copy.deepcopy(dict(delta)))
        return RecoveryState(merged)

    def view(self) -> Mapping[str, Any]:
        """只读视图，交给步骤使用"""
        return MappingProxyType(copy.deepcopy(self._data))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


@dataclass(frozen=True)
class PendingOperation:
    """An external write awaiting confirmation, plus its confirmation policy."""
    handle: str
    confirmations: int
    timeout: float
    label: str = ""

    def describe(self) -> str:
        return f"{self.label} ({self.handle})" if self.label else self.handle


@dataclass
class OperationStatus:
    """Confirmation source report for one handle."""
    depth: int
    receipt: Optional[Dict[str, Any]] = None


@dataclass
class Confirmation:
    """Successful wait for one operation."""
    operation: PendingOperation
    depth: int
    receipt: Optional[Dict[str, Any]] = None


@dataclass
class StepResult:
    """One outcome of a logical sub-operation within a step.

    `hash` is the pending-operation handle, if the sub-operation submitted
    anything. `delta` is merged into the recovery state once the whole batch
    is confirmed; `resolve` derives further entries from the confirmed
    receipt (for values such as a contract address that only exist once
    the transaction is mined).
    """
    message: str
    hash: Optional[str] = None
    delta: Dict[str, Any] = field(default_factory=dict)
    resolve: Optional[Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]] = None
    confirmations: Optional[int] = None   # 覆盖默认确认数
    timeout: Optional[float] = None       # 覆盖默认超时

    def pending_operation(
        self,
        default_confirmations: int,
        default_timeout: float,
    ) -> Optional[PendingOperation]:
        if not self.hash:
            return None
        return PendingOperation(
            handle=self.hash,
            confirmations=(
                self.confirmations if self.confirmations is not None else default_confirmations
            ),
            timeout=self.timeout if self.timeout is not None else default_timeout,
            label=self.message,
        )

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（用于报告输出）"""
        payload: Dict[str, Any] = {"message": self.message}
        if self.hash:
            payload["hash"] = self.hash
        if self.delta:
            payload["delta"] = copy.deepcopy(self.delta)
        return payload


@dataclass
class StepRecord:
    """Aggregated record of one executed step."""
    index: int
    step_name: str
    results: List[StepResult] = field(default_factory=list)
    committed: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "step_name": self.step_name,
            "results": [r.to_dict() for r in self.results],
            "committed": copy.deepcopy(self.committed),
            "timestamp": self.timestamp,
        }


@dataclass
class RunOutcome:
    """部署运行的最终结果"""
    status: RunStatus
    records: List[StepRecord] = field(default_factory=list)
    final_state: Optional[Dict[str, Any]] = None
    error: Optional["DeployerError"] = None
    failed_step: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "steps": [r.to_dict() for r in self.records],
            "final_state": copy.deepcopy(self.final_state),
            "error": str(self.error) if self.error else None,
            "failed_step": self.failed_step,
        }

"""Step contract consumed by the orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, Mapping, Optional

from ..orchestrator.models import StepResult


class Step(ABC):
    """
    部署步骤基类

    每个步骤以 `key` 记录到恢复状态中；当状态中已有该 key 时，
    步骤是空操作，不会再次提交任何交易（保证可以安全地断点续跑）。
    """

    def __init__(self, key: str, name: Optional[str] = None) -> None:
        if not key:
            raise ValueError("Step key must not be empty")
        self.key = key
        self.name = name or key

    def is_complete(self, state: Mapping[str, Any]) -> bool:
        return self.key in state

    def execute(self, state: Mapping[str, Any]) -> List[StepResult]:
        """Run the step against a read-only view of the recovery state."""
        if self.is_complete(state):
            return [StepResult(message=f"{self.name} already recorded: {state[self.key]}")]
        return list(self.perform(state))

    @abstractmethod
    def perform(self, state: Mapping[str, Any]) -> Iterable[StepResult]:
        """Submit the step's operations. Only called when not yet recorded."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key={self.key!r})"


class FunctionStep(Step):
    """Adapts a plain callable `fn(state) -> results` into a Step."""

    def __init__(
        self,
        key: str,
        fn: Callable[[Mapping[str, Any]], Iterable[StepResult]],
        name: Optional[str] = None,
    ) -> None:
        super().__init__(key, name)
        self.fn = fn

    def perform(self, state: Mapping[str, Any]) -> Iterable[StepResult]:
        return self.fn(state)

"""Result aggregator for end-of-run reporting.

Collects each step's result batch in order and keeps the last state that
reached durable storage, so the report is the same shape whether the run
completed or failed.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

from .models import StepRecord, StepResult

logger = logging.getLogger(__name__)


class ResultAggregator:
    """管理每个步骤的结果批次与最终状态（只增不减，不会失败）"""

    def __init__(self) -> None:
        self._records: List[StepRecord] = []
        self._final_state: Optional[Dict[str, Any]] = None

    def record(
        self,
        step_name: str,
        batch: List[StepResult],
        committed: Optional[Mapping[str, Any]] = None,
    ) -> StepRecord:
        """记录一个步骤的结果批次

        Args:
            step_name: 步骤名称
            batch: 步骤返回的结果
            committed: 本步骤合并进状态的增量
        """
        record = StepRecord(
            index=len(self._records) + 1,
            step_name=step_name,
            results=list(batch),
            committed=copy.deepcopy(dict(committed or {})),
        )
        self._records.append(record)
        logger.debug("Recorded %d result(s) for step %s", len(record.results), step_name)
        return record

    def set_final_state(self, state: Mapping[str, Any]) -> None:
        self._final_state = copy.deepcopy(dict(state))

    def final_state(self) -> Optional[Dict[str, Any]]:
        """最后一次成功持久化的状态（从未加载时为 None）"""
        return copy.deepcopy(self._final_state)

    @property
    def records(self) -> List[StepRecord]:
        return list(self._records)

    def results(self) -> List[List[Dict[str, Any]]]:
        """Per-step result batches in execution order, as plain dicts."""
        return [[r.to_dict() for r in record.results] for record in self._records]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [record.to_dict() for record in self._records],
            "final_state": self.final_state(),
        }

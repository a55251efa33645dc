"""Deployment orchestrator: drives steps sequentially with durable checkpoints."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union, TYPE_CHECKING

from ..errors import (
    ConfirmationError,
    CorruptStateError,
    DeployerError,
    StateConflictError,
    StepExecutionError,
)
from .aggregator import ResultAggregator
from .confirmation import ConfirmationWaiter
from .models import (
    Confirmation,
    PendingOperation,
    RecoveryState,
    RunOutcome,
    RunStatus,
    StepResult,
)
from .state_store import StateStore

if TYPE_CHECKING:
    from ..config import DeploymentConfig
    from ..steps.base import Step

logger = logging.getLogger(__name__)


def _step_name(step: Any) -> str:
    return getattr(step, "name", None) or step.__class__.__name__


class DeploymentOrchestrator:
    """
    部署编排器

    逐个拉取步骤并执行，等待该步骤所有交易确认后合并状态增量并持久化，
    然后才拉取下一个步骤。任何致命错误都会立即终止运行，
    并保留最后一次成功持久化的状态。

    状态机: IDLE → RUNNING → {COMPLETED, FAILED}
    """

    def __init__(
        self,
        config: "DeploymentConfig",
        state_store: StateStore,
        waiter: ConfirmationWaiter,
        aggregator: Optional[ResultAggregator] = None,
        log_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        self.config = config
        self.state_store = state_store
        self.waiter = waiter
        self.aggregator = aggregator or ResultAggregator()
        self.status = RunStatus.IDLE

        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir:
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                # 日志写不了不影响部署
                logger.warning(f"⚠️ Cannot create log directory {self.log_dir}: {exc}; run log disabled")
                self.log_dir = None

        self._state: Optional[RecoveryState] = None
        self.deployment_log: dict = {}
        self.current_log_file: Optional[Path] = None

    def run(
        self,
        steps: Iterable["Step"],
        initial_state: Optional[Mapping[str, Any]] = None,
    ) -> RunOutcome:
        """
        执行步骤序列

        Args:
            steps: 惰性步骤序列（按需拉取）
            initial_state: 初始恢复状态；为 None 时从状态存储加载

        Returns:
            RunOutcome: 终态、各步骤结果以及最终状态
        """
        if self.status != RunStatus.IDLE:
            raise RuntimeError(
                f"Orchestrator is {self.status.value}; start a new run to resume from the persisted state"
            )
        self.status = RunStatus.RUNNING
        self._init_log()

        try:
            if initial_state is not None:
                self._state = RecoveryState(initial_state)
            else:
                self._state = self.state_store.load()
        except CorruptStateError as exc:
            logger.error("❌ %s", exc)
            return self._fail(exc, None)

        self.aggregator.set_final_state(self._state.to_dict())

        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT ORCHESTRATION")
        logger.info("=" * 60)
        logger.info(f"State file: {self.state_store.path}")
        logger.info(f"Recorded keys: {len(self._state)}")
        logger.info(f"Confirmations: {self.config.confirmations}")
        logger.info(f"Timeout per operation: {self.config.confirmation_timeout:g}s")
        logger.info("=" * 60)
        logger.info("")

        step_iter = iter(steps)
        index = 0
        while True:
            try:
                step = next(step_iter)
            except StopIteration:
                break
            except Exception as exc:
                # 步骤序列本身出错（例如工厂生成步骤失败）
                error = StepExecutionError("<step sequence>", exc)
                logger.error("❌ %s", error)
                return self._fail(error, None)

            index += 1
            name = _step_name(step)
            logger.info(f"📍 Step {index}: {name}")
            try:
                self._run_step(step, name)
            except DeployerError as exc:
                logger.error(f"   ❌ {exc}")
                return self._fail(exc, name)
            logger.info("")

        self.status = RunStatus.COMPLETED
        logger.info("=" * 60)
        logger.info("🎉 Deployment completed successfully!")
        logger.info("=" * 60)
        self._finalize_log(None)
        return self._outcome()

    def _run_step(self, step: "Step", name: str) -> None:
        assert self._state is not None

        try:
            batch: List[StepResult] = list(step.execute(self._state.view()) or [])
            for result in batch:
                if not isinstance(result, StepResult):
                    raise TypeError(
                        f"step returned {type(result).__name__}, expected StepResult"
                    )
        except Exception as exc:
            raise StepExecutionError(name, exc) from exc

        for result in batch:
            logger.info(f"   {result.message}")

        operations = self._pending_operations(batch)
        # 等待本步骤所有交易确认；失败时本步骤的增量不会写入状态
        confirmations = self.waiter.await_all(operations)

        delta = self._collect_delta(name, batch, confirmations)
        try:
            new_state = self._state.merge(delta)
        except StateConflictError as exc:
            raise StepExecutionError(name, exc) from exc

        record = self.aggregator.record(name, batch, committed=delta)
        self._log_step(record.to_dict(), len(operations))

        if new_state == self._state:
            logger.info("   ⏭️ Nothing new to record")
            return

        self.state_store.persist(new_state)
        self._state = new_state
        self.aggregator.set_final_state(new_state.to_dict())
        logger.info(f"   💾 State saved ({len(delta)} key(s) recorded)")

    def _pending_operations(self, batch: List[StepResult]) -> List[PendingOperation]:
        operations = []
        for result in batch:
            op = result.pending_operation(
                self.config.confirmations, self.config.confirmation_timeout
            )
            if op is not None:
                operations.append(op)
        return operations

    def _collect_delta(
        self,
        name: str,
        batch: List[StepResult],
        confirmations: List[Confirmation],
    ) -> Dict[str, Any]:
        """合并批次内所有结果的状态增量（含从回执派生的值）"""
        receipts = {c.operation.handle: c.receipt for c in confirmations}
        collected = RecoveryState()
        try:
            for result in batch:
                collected = collected.merge(result.delta)
                if result.resolve is not None:
                    collected = collected.merge(result.resolve(receipts.get(result.hash)))
        except Exception as exc:
            raise StepExecutionError(name, exc) from exc
        return collected.to_dict()

    def _fail(self, error: DeployerError, step_name: Optional[str]) -> RunOutcome:
        self.status = RunStatus.FAILED
        logger.error("=" * 60)
        logger.error("💥 Deployment failed")
        if isinstance(error, ConfirmationError):
            logger.error("   Operation: %s", error.operation.describe())
        logger.error("=" * 60)
        self._finalize_log(error)
        return self._outcome(error=error, failed_step=step_name)

    def _outcome(
        self,
        error: Optional[DeployerError] = None,
        failed_step: Optional[str] = None,
    ) -> RunOutcome:
        return RunOutcome(
            status=self.status,
            records=self.aggregator.records,
            final_state=self.aggregator.final_state(),
            error=error,
            failed_step=failed_step,
        )

    def _init_log(self) -> None:
        """初始化日志文件"""
        self.deployment_log = {
            "version": "1.0",
            "state_path": str(self.state_store.path),
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": self.status.value,
            "config": {
                "confirmations": self.config.confirmations,
                "confirmation_timeout": self.config.confirmation_timeout,
                "poll_interval": self.config.poll_interval,
            },
            "steps": [],
            "final_state": None,
            "error": None,
        }
        if self.log_dir:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.current_log_file = self.log_dir / f"deploy_{timestamp}.json"
            logger.info(f"📝 Logging to: {self.current_log_file}")
        self._save_log()

    def _log_step(self, record: Dict[str, Any], operations: int) -> None:
        record["operations"] = operations
        self.deployment_log["steps"].append(record)
        self._save_log()

    def _finalize_log(self, error: Optional[DeployerError]) -> None:
        """完成日志记录"""
        self.deployment_log["end_time"] = datetime.now().isoformat()
        self.deployment_log["status"] = self.status.value
        self.deployment_log["final_state"] = self.aggregator.final_state()
        self.deployment_log["error"] = str(error) if error else None

        steps = self.deployment_log.get("steps", [])
        self.deployment_log["summary"] = {
            "total_steps": len(steps),
            "total_operations": sum(s.get("operations", 0) for s in steps),
            "duration_seconds": self._calculate_duration(),
        }
        self._save_log()
        if self.current_log_file:
            logger.info(f"📄 Log saved to: {self.current_log_file}")

    def _calculate_duration(self) -> float:
        """计算执行时长"""
        start = datetime.fromisoformat(self.deployment_log["start_time"])
        end = datetime.fromisoformat(self.deployment_log["end_time"])
        return (end - start).total_seconds()

    def _save_log(self) -> None:
        """保存日志到文件"""
        if not self.current_log_file:
            return
        try:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.deployment_log, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning(f"⚠️ Failed to write run log {self.current_log_file}: {exc}")

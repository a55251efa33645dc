"""Confirmation waiter: waits for a batch of pending operations concurrently."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Dict, Iterable, List, Optional

from ..errors import (
    ConfirmationError,
    ConfirmationTimeoutError,
    SourceUnavailableError,
)
from .models import Confirmation, OperationStatus, PendingOperation

logger = logging.getLogger(__name__)


class ConfirmationSource(ABC):
    """Abstract base class for anything that can report confirmation depth."""

    @abstractmethod
    def check(self, handle: str) -> OperationStatus:
        """
        Report the current confirmation depth of `handle`.

        Returns:
            OperationStatus with depth 0 while the operation is still pending

        Raises:
            OperationRejectedError: if the operation is known to have failed
            SourceUnavailableError: on a transient failure (polling continues)
        """
        pass


class _BatchAbandoned(Exception):
    """Raised inside a worker once another operation in the batch failed."""


class ConfirmationWaiter:
    """
    确认等待器

    同一批次内的所有操作并发等待（互不依赖），
    任何一个超时或失败即整体失败，其余等待随即放弃。
    跨步骤的操作永远不会并发等待。
    """

    def __init__(
        self,
        source: ConfirmationSource,
        poll_interval: float = 4.0,
    ) -> None:
        self.source = source
        self.poll_interval = poll_interval

    def await_all(
        self,
        operations: Iterable[PendingOperation],
        confirmations: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[Confirmation]:
        """
        Wait until every operation reaches its confirmation depth.

        Args:
            operations: pending operations of one step
            confirmations: overrides each operation's required depth
            timeout: overrides each operation's timeout (seconds)

        Returns:
            One Confirmation per distinct operation, in submission order

        Raises:
            ConfirmationError: for the first operation that timed out or failed
        """
        pending = self._dedupe(operations, confirmations, timeout)
        if not pending:
            return []

        logger.info("   ⏳ Waiting for %d operation(s) to confirm", len(pending))
        abandon = threading.Event()

        with ThreadPoolExecutor(
            max_workers=len(pending), thread_name_prefix="confirm"
        ) as executor:
            futures = [executor.submit(self._await_one, op, abandon) for op in pending]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)

            for op, future in zip(pending, futures):
                if future not in done:
                    continue
                exc = future.exception()
                if exc is not None and not isinstance(exc, _BatchAbandoned):
                    # 放弃同批次的其余等待
                    abandon.set()
                    logger.error("   ❌ %s did not confirm: %s", op.describe(), exc)
                    raise ConfirmationError(op, exc)

        results = [future.result() for future in futures]
        logger.info("   ✅ All %d operation(s) confirmed", len(results))
        return results

    @staticmethod
    def _dedupe(
        operations: Iterable[PendingOperation],
        confirmations: Optional[int],
        timeout: Optional[float],
    ) -> List[PendingOperation]:
        unique: Dict[str, PendingOperation] = {}
        for op in operations:
            if op is None or op.handle in unique:
                continue
            if confirmations is not None or timeout is not None:
                op = PendingOperation(
                    handle=op.handle,
                    confirmations=confirmations if confirmations is not None else op.confirmations,
                    timeout=timeout if timeout is not None else op.timeout,
                    label=op.label,
                )
            unique[op.handle] = op
        return list(unique.values())

    def _await_one(self, op: PendingOperation, abandon: threading.Event) -> Confirmation:
        deadline = time.monotonic() + op.timeout
        depth = 0
        while True:
            try:
                status = self.source.check(op.handle)
            except SourceUnavailableError as exc:
                logger.warning("   Confirmation source unavailable for %s: %s", op.handle, exc)
            else:
                depth = status.depth
                if depth >= op.confirmations:
                    logger.debug("   %s reached %d confirmation(s)", op.handle, depth)
                    return Confirmation(operation=op, depth=depth, receipt=status.receipt)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeoutError(op.handle, op.timeout, depth)
            if abandon.wait(min(self.poll_interval, remaining)):
                raise _BatchAbandoned(op.handle)

"""Orchestrator module for resumable step-based deployment.

This module provides the core of a resumable deployment:
- DeploymentOrchestrator: Pulls steps one at a time and checkpoints after each
- ConfirmationWaiter: Waits for a step's pending operations concurrently
- StateStore: Loads and durably persists the recovery state document
- ResultAggregator: Collects step results and the last persisted state
"""

from .models import (
    RunStatus,
    RecoveryState,
    PendingOperation,
    OperationStatus,
    Confirmation,
    StepResult,
    StepRecord,
    RunOutcome,
)
from .state_store import StateStore
from .confirmation import ConfirmationSource, ConfirmationWaiter
from .aggregator import ResultAggregator
from .orchestrator import DeploymentOrchestrator

__all__ = [
    "RunStatus",
    "RecoveryState",
    "PendingOperation",
    "OperationStatus",
    "Confirmation",
    "StepResult",
    "StepRecord",
    "RunOutcome",
    "StateStore",
    "ConfirmationSource",
    "ConfirmationWaiter",
    "ResultAggregator",
    "DeploymentOrchestrator",
]

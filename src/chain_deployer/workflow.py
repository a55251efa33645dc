"""High-level workflow: wires config, network client and orchestrator together."""

from __future__ import annotations

from typing import Iterable, Optional

from .config import AppConfig
from .orchestrator import (
    ConfirmationSource,
    ConfirmationWaiter,
    DeploymentOrchestrator,
    ResultAggregator,
    RunOutcome,
    StateStore,
)
from .rpc import JsonRpcClient, RpcConfirmationSource
from .steps import Step, build_step_sequence
from .utils.logging import get_logger

logger = get_logger(__name__)


class DeploymentWorkflow:
    """Coordinates one deployment run from a validated AppConfig."""

    def __init__(
        self,
        config: AppConfig,
        client: Optional[JsonRpcClient] = None,
        source: Optional[ConfirmationSource] = None,
        steps: Optional[Iterable[Step]] = None,
        log_dir: Optional[str] = None,
    ) -> None:
        self.config = config
        self._client = client
        self._source = source
        self._steps = steps
        self.log_dir = log_dir if log_dir is not None else config.deployment.logs_dir
        self.state_store = StateStore(config.deployment.state_path)
        self.aggregator = ResultAggregator()

    @property
    def client(self) -> JsonRpcClient:
        if self._client is None:
            self._client = JsonRpcClient.from_config(self.config.network)
        return self._client

    def build_orchestrator(self) -> DeploymentOrchestrator:
        deployment = self.config.deployment
        source = self._source or RpcConfirmationSource(self.client)
        waiter = ConfirmationWaiter(source, poll_interval=deployment.poll_interval)
        return DeploymentOrchestrator(
            config=deployment,
            state_store=self.state_store,
            waiter=waiter,
            aggregator=self.aggregator,
            log_dir=self.log_dir or None,
        )

    def run_deploy(self) -> RunOutcome:
        """Run every step, resuming from the persisted state if there is one.

        Raises:
            ConfigError: if no step sequence can be built
        """
        steps = self._steps
        if steps is None:
            steps = build_step_sequence(self.config, self.client)

        if self.state_store.exists():
            logger.info("🔁 Resuming from %s", self.state_store.path)
        else:
            logger.info("🆕 Starting a fresh deployment (state: %s)", self.state_store.path)

        orchestrator = self.build_orchestrator()
        return orchestrator.run(steps)

"""Step sequences consumed by the orchestrator.

- Step / FunctionStep: the step contract
- PlanStepSequence: steps built from a JSON plan file
- load_step_factory: custom Python step sequences ("package.module:callable")
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from ..errors import ConfigError, DeployerError
from .base import FunctionStep, Step
from .plan import (
    ContractCallStep,
    DeployContractStep,
    Plan,
    PlanStepSequence,
    TxSettings,
    load_plan,
)

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..rpc.client import JsonRpcClient


@dataclass
class StepFactoryContext:
    """Passed to custom step factories."""
    config: "AppConfig"
    client: "JsonRpcClient"
    settings: TxSettings


def load_step_factory(target: str) -> Callable[[StepFactoryContext], Iterable[Step]]:
    """Import `package.module:callable`."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"Step factory must look like 'package.module:callable', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import step factory module {module_name}: {exc}") from exc
    factory: Any = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"Step factory {target} is not callable")
    return factory


def build_step_sequence(
    config: "AppConfig",
    client: "JsonRpcClient",
    settings: Optional[TxSettings] = None,
) -> Iterable[Step]:
    """根据配置选择步骤来源：自定义工厂优先，其次是计划文件"""
    deployment = config.deployment
    if settings is None:
        gas_price = config.network.gas_price_gwei
        settings = TxSettings(
            from_address=config.network.from_address or "",
            gas_price_wei=int(gas_price) * 10**9 if gas_price else None,
        )

    if deployment.steps_factory:
        factory = load_step_factory(deployment.steps_factory)
        try:
            return factory(StepFactoryContext(config=config, client=client, settings=settings))
        except DeployerError:
            raise
        except Exception as exc:
            raise ConfigError(
                f"Step factory {deployment.steps_factory} failed to build steps: {exc}"
            ) from exc
    if deployment.plan_path:
        return PlanStepSequence(load_plan(deployment.plan_path), client, settings)
    raise ConfigError("No steps configured: pass --plan or --steps")


__all__ = [
    "Step",
    "FunctionStep",
    "DeployContractStep",
    "ContractCallStep",
    "Plan",
    "PlanStepSequence",
    "TxSettings",
    "StepFactoryContext",
    "load_plan",
    "load_step_factory",
    "build_step_sequence",
]

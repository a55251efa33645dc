"""Configuration loading utilities for chain-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .paths import DEFAULT_CONFIG_PATH, DEFAULT_STATE_PATH, LOGS_DIR
from .utils.validation import normalize_address, private_key_address, validate_rpc_url

# Load .env file if it exists
load_dotenv()

ENV_PREFIX = "CHAIN_DEPLOYER_"


@dataclass
class NetworkConfig:
    """Connection settings for the JSON-RPC node."""

    json_rpc_url: Optional[str] = None
    from_address: Optional[str] = None     # 部署账户（无私钥时由节点托管）
    private_key: Optional[str] = field(default=None, repr=False)  # 本地签名私钥，建议通过环境变量提供
    gas_price_gwei: Optional[int] = None   # 不设置时由节点决定
    request_timeout: int = 30              # 单次 RPC 请求超时（秒）
    proxy: Optional[str] = None            # 代理设置，如 "http://127.0.0.1:7890"


@dataclass
class DeploymentConfig:
    """Settings for the resumable step orchestrator."""

    state_path: str = str(DEFAULT_STATE_PATH)
    confirmations: int = 2                 # 每笔交易需要的确认数
    confirmation_timeout: float = 15 * 60  # 每笔交易的等待超时（秒）
    poll_interval: float = 4.0             # 轮询确认状态的间隔（秒）
    plan_path: Optional[str] = None        # JSON 部署计划
    steps_factory: Optional[str] = None    # "package.module:callable"
    logs_dir: str = str(LOGS_DIR)


@dataclass
class AppConfig:
    """Top-level configuration."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        network_payload = payload.get("network", {}) or {}
        deployment_payload = payload.get("deployment", {}) or {}

        # 过滤掉以下划线开头的注释字段
        network_payload = {k: v for k, v in network_payload.items() if not k.startswith("_")}
        deployment_payload = {k: v for k, v in deployment_payload.items() if not k.startswith("_")}

        try:
            return cls(
                network=NetworkConfig(**{**NetworkConfig().__dict__, **network_payload}),
                deployment=DeploymentConfig(
                    **{**DeploymentConfig().__dict__, **deployment_payload}
                ),
            )
        except TypeError as exc:
            raise ConfigError(f"Unknown configuration field: {exc}") from exc

    def validate(self, require_sender: bool = True) -> None:
        """Check the values the orchestrator depends on.

        Raises:
            ConfigError: if any value is malformed
        """
        deployment = self.deployment
        if int(deployment.confirmations) < 1:
            raise ConfigError(
                f"Confirmations must be at least 1, got {deployment.confirmations}"
            )
        if float(deployment.confirmation_timeout) <= 0:
            raise ConfigError("Confirmation timeout must be positive")
        if float(deployment.poll_interval) <= 0:
            raise ConfigError("Poll interval must be positive")
        if not deployment.state_path:
            raise ConfigError("State path must not be empty")

        network = self.network
        if not network.json_rpc_url:
            raise ConfigError("Missing JSON RPC URL! JSON RPC URL where the steps should be submitted")
        validate_rpc_url(network.json_rpc_url)

        if network.from_address:
            network.from_address = normalize_address(network.from_address, "from address")

        if network.private_key:
            signer_address = private_key_address(network.private_key)
            if network.from_address and network.from_address != signer_address:
                raise ConfigError(
                    f"From address {network.from_address} does not match the private key ({signer_address})"
                )
            network.from_address = signer_address

        if not network.from_address and require_sender:
            raise ConfigError(
                "Missing sender! Pass a private key, or the from address of a node-managed account"
            )
        if network.gas_price_gwei is not None and int(network.gas_price_gwei) <= 0:
            raise ConfigError("Gas price must be a positive number of gwei")


def _env(name: str) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    return value if value not in (None, "") else None


def _parse_env(name: str, value: str, kind: type) -> Any:
    try:
        return kind(value)
    except ValueError as exc:
        raise ConfigError(f"Failed to parse {ENV_PREFIX}{name}: {value!r}") from exc


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Apply CHAIN_DEPLOYER_* environment variables on top of `config`.

    Environment variables (higher priority than config file):
    - CHAIN_DEPLOYER_JSON_RPC_URL: JSON-RPC endpoint
    - CHAIN_DEPLOYER_FROM_ADDRESS: account used to submit transactions
    - CHAIN_DEPLOYER_PRIVATE_KEY: key used to sign transactions locally
    - CHAIN_DEPLOYER_GAS_PRICE: gas price in gwei
    - CHAIN_DEPLOYER_PROXY: HTTP proxy for RPC requests
    - CHAIN_DEPLOYER_CONFIRMATIONS: confirmations to wait for per transaction
    - CHAIN_DEPLOYER_TIMEOUT: per-transaction timeout in seconds
    - CHAIN_DEPLOYER_POLL_INTERVAL: seconds between confirmation polls
    - CHAIN_DEPLOYER_STATE: path of the recovery state document
    - CHAIN_DEPLOYER_PLAN: path of a JSON deployment plan
    - CHAIN_DEPLOYER_STEPS: "module:callable" step sequence factory
    """
    network = config.network
    deployment = config.deployment

    env_url = _env("JSON_RPC_URL")
    if env_url:
        network.json_rpc_url = env_url

    env_from = _env("FROM_ADDRESS")
    if env_from:
        network.from_address = env_from

    env_key = _env("PRIVATE_KEY")
    if env_key:
        network.private_key = env_key

    env_gas = _env("GAS_PRICE")
    if env_gas:
        network.gas_price_gwei = _parse_env("GAS_PRICE", env_gas, int)

    env_proxy = _env("PROXY")
    if env_proxy:
        network.proxy = env_proxy

    env_confirmations = _env("CONFIRMATIONS")
    if env_confirmations:
        deployment.confirmations = _parse_env("CONFIRMATIONS", env_confirmations, int)

    env_timeout = _env("TIMEOUT")
    if env_timeout:
        deployment.confirmation_timeout = _parse_env("TIMEOUT", env_timeout, float)

    env_poll = _env("POLL_INTERVAL")
    if env_poll:
        deployment.poll_interval = _parse_env("POLL_INTERVAL", env_poll, float)

    env_state = _env("STATE")
    if env_state:
        deployment.state_path = env_state

    env_plan = _env("PLAN")
    if env_plan:
        deployment.plan_path = env_plan

    env_steps = _env("STEPS")
    if env_steps:
        deployment.steps_factory = env_steps

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    The config file is optional: when neither `path` nor the default file
    exists, built-in defaults are used. An explicitly given `path` that does
    not exist is an error.
    """
    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(DEFAULT_CONFIG_PATH)

    config = AppConfig()
    for candidate in candidate_paths:
        if candidate.is_file():
            try:
                with candidate.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"Failed to parse config file {candidate}: {exc}") from exc
            config = AppConfig.from_dict(data)
            break

    return apply_env_overrides(config)

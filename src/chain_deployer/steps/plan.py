"""Step sequence built from a JSON deployment plan.

Plan format::

    {
      "variables": {"ownerAddress": "0x..."},
      "steps": [
        {"key": "proxyAdminAddress", "type": "deploy", "name": "Deploy ProxyAdmin",
         "bytecode": "0x6080..."},
        {"key": "proxyAdminOwnerSet", "type": "call", "to": "{{proxyAdminAddress}}",
         "data": "0xf2fde38b{{ownerAddress}}"}
      ]
    }

`{{key}}` placeholders are replaced from the plan variables and the recovery
state when the step runs: inside `to` by the recorded address, inside `data` by the address
ABI-encoded as a 32-byte word.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from ..errors import ConfigError
from ..orchestrator.models import StepResult
from ..rpc.client import JsonRpcClient
from ..utils.validation import is_address, normalize_address, validate_hex_data
from .base import Step

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")

STEP_TYPES = ("deploy", "call")


def _lookup_address(state: Mapping[str, Any], key: str) -> str:
    value = state.get(key)
    if value is None:
        raise ValueError(f"State key '{key}' is not recorded yet")
    if not is_address(value):
        raise ValueError(f"State key '{key}' does not hold an address: {value!r}")
    return value


def render_address(template: str, state: Mapping[str, Any]) -> str:
    """解析 `to` 字段：字面地址或 {{key}} 引用"""
    match = _PLACEHOLDER_RE.fullmatch(template.strip())
    if match:
        return _lookup_address(state, match.group(1)).lower()
    return normalize_address(template, "target address")


def render_data(template: str, state: Mapping[str, Any]) -> str:
    """替换 data 中的 {{key}} 为 32 字节 ABI 编码地址"""

    def _encode(match: "re.Match[str]") -> str:
        address = _lookup_address(state, match.group(1))
        return address[2:].lower().rjust(64, "0")

    return _PLACEHOLDER_RE.sub(_encode, template)


@dataclass
class TxSettings:
    """Transaction fields shared by every plan step."""
    from_address: str
    gas_price_wei: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def build(self, **fields: Any) -> Dict[str, Any]:
        tx: Dict[str, Any] = {"from": self.from_address}
        if self.gas_price_wei is not None:
            tx["gasPrice"] = hex(self.gas_price_wei)
        tx.update(self.extra)
        tx.update({k: v for k, v in fields.items() if v is not None})
        return tx


@dataclass
class Plan:
    """Validated plan file contents."""
    steps: List[Dict[str, Any]]
    variables: Dict[str, Any] = field(default_factory=dict)


class DeployContractStep(Step):
    """部署合约；合约地址在交易确认后从回执中取得"""

    def __init__(
        self,
        key: str,
        bytecode: str,
        client: JsonRpcClient,
        settings: TxSettings,
        name: Optional[str] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(key, name or f"Deploy {key}")
        self.bytecode = bytecode
        self.client = client
        self.settings = settings
        self.variables = dict(variables or {})

    def perform(self, state: Mapping[str, Any]) -> Iterable[StepResult]:
        data = render_data(self.bytecode, {**self.variables, **state})
        tx_hash = self.client.send_transaction(self.settings.build(data=data))
        return [
            StepResult(
                message=f"{self.name}: contract creation submitted",
                hash=tx_hash,
                resolve=self._contract_address,
            )
        ]

    def _contract_address(self, receipt: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        address = (receipt or {}).get("contractAddress")
        if not is_address(address):
            raise ValueError(f"Receipt for {self.name} carries no contract address")
        return {self.key: address.lower()}


class ContractCallStep(Step):
    """调用已部署合约；状态中记录该交易哈希"""

    def __init__(
        self,
        key: str,
        to: str,
        data: str,
        client: JsonRpcClient,
        settings: TxSettings,
        value: Optional[int] = None,
        name: Optional[str] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(key, name or f"Call {key}")
        self.to = to
        self.data = data
        self.value = value
        self.client = client
        self.settings = settings
        self.variables = dict(variables or {})

    def perform(self, state: Mapping[str, Any]) -> Iterable[StepResult]:
        lookup = {**self.variables, **state}
        tx = self.settings.build(
            to=render_address(self.to, lookup),
            data=render_data(self.data, lookup),
            value=hex(self.value) if self.value else None,
        )
        tx_hash = self.client.send_transaction(tx)
        return [
            StepResult(
                message=f"{self.name}: transaction submitted",
                hash=tx_hash,
                delta={self.key: tx_hash},
            )
        ]


def load_plan(path: Union[str, Path]) -> Plan:
    """
    Read and validate a plan file.

    Raises:
        ConfigError: if the file is missing or malformed
    """
    plan_path = Path(path)
    if not plan_path.is_file():
        raise ConfigError(f"Plan file not found: {plan_path}")
    try:
        with plan_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to load plan {plan_path}: {exc}") from exc

    entries = payload.get("steps") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise ConfigError(f"Plan {plan_path} must contain a list of steps")

    variables = payload.get("variables", {}) if isinstance(payload, dict) else {}
    if not isinstance(variables, dict):
        raise ConfigError(f"Plan {plan_path} variables must be an object")

    seen = set()
    for position, entry in enumerate(entries, 1):
        if not isinstance(entry, dict):
            raise ConfigError(f"Plan step #{position} must be an object")
        key = entry.get("key")
        if not key or not isinstance(key, str):
            raise ConfigError(f"Plan step #{position} is missing a key")
        if key in seen:
            raise ConfigError(f"Plan step key '{key}' is used twice")
        seen.add(key)

        step_type = entry.get("type")
        if step_type not in STEP_TYPES:
            raise ConfigError(
                f"Plan step '{key}' has unsupported type {step_type!r}. "
                f"Supported types: {', '.join(STEP_TYPES)}"
            )
        if step_type == "deploy":
            validate_hex_data(_PLACEHOLDER_RE.sub("", entry.get("bytecode", "")), f"bytecode of '{key}'")
        else:
            if not entry.get("to"):
                raise ConfigError(f"Plan step '{key}' is missing a target address")
            validate_hex_data(_PLACEHOLDER_RE.sub("", entry.get("data", "0x")), f"data of '{key}'")

    return Plan(steps=entries, variables=variables)


class PlanStepSequence:
    """Lazily builds one Step per plan entry, in plan order."""

    def __init__(
        self,
        plan: Plan,
        client: JsonRpcClient,
        settings: TxSettings,
    ) -> None:
        self.plan = plan
        self.client = client
        self.settings = settings

    def __len__(self) -> int:
        return len(self.plan.steps)

    def __iter__(self) -> Iterator[Step]:
        for entry in self.plan.steps:
            yield self._build(entry)

    def _build(self, entry: Dict[str, Any]) -> Step:
        if entry["type"] == "deploy":
            return DeployContractStep(
                key=entry["key"],
                bytecode=entry["bytecode"],
                client=self.client,
                settings=self.settings,
                name=entry.get("name"),
                variables=self.plan.variables,
            )
        return ContractCallStep(
            key=entry["key"],
            to=entry["to"],
            data=entry.get("data", "0x"),
            value=entry.get("value"),
            client=self.client,
            settings=self.settings,
            name=entry.get("name"),
            variables=self.plan.variables,
        )

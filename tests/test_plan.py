import json
import tempfile
import unittest
from pathlib import Path

from chain_deployer.config import AppConfig
from chain_deployer.errors import ConfigError
from chain_deployer.steps import (
    ContractCallStep,
    DeployContractStep,
    PlanStepSequence,
    TxSettings,
    build_step_sequence,
    load_plan,
    load_step_factory,
)

SENDER = "0x" + "1" * 40
OWNER = "0x" + "2" * 40
FACTORY = "0x" + "a" * 40


class StubClient:
    def __init__(self):
        self.sent = []

    def send_transaction(self, tx):
        self.sent.append(tx)
        return f"0xhash{len(self.sent)}"


def build_fixture_steps(context):
    """Used by the factory-loading test below."""
    return ["custom", context.settings.from_address]


class PlanTests(unittest.TestCase):
    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.root = Path(temp_dir.name)
        self.client = StubClient()
        self.settings = TxSettings(from_address=SENDER, gas_price_wei=5 * 10**9)

    def _write_plan(self, payload) -> Path:
        path = self.root / "plan.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_loads_plan_with_variables(self) -> None:
        path = self._write_plan({
            "variables": {"ownerAddress": OWNER},
            "steps": [
                {"key": "factory", "type": "deploy", "bytecode": "0x6080"},
                {"key": "owner", "type": "call", "to": "{{factory}}", "data": "0x13af4035{{ownerAddress}}"},
            ],
        })
        plan = load_plan(path)

        steps = list(PlanStepSequence(plan, self.client, self.settings))
        self.assertIsInstance(steps[0], DeployContractStep)
        self.assertIsInstance(steps[1], ContractCallStep)
        self.assertEqual(steps[1].variables, {"ownerAddress": OWNER})

    def test_rejects_malformed_plans(self) -> None:
        cases = [
            {"steps": {"key": "x"}},
            {"steps": [{"type": "deploy", "bytecode": "0x00"}]},
            {"steps": [{"key": "x", "type": "selfdestruct"}]},
            {"steps": [{"key": "x", "type": "deploy", "bytecode": "6080"}]},
            {"steps": [{"key": "x", "type": "call", "data": "0x00"}]},
            {"steps": [
                {"key": "x", "type": "deploy", "bytecode": "0x00"},
                {"key": "x", "type": "deploy", "bytecode": "0x00"},
            ]},
        ]
        for payload in cases:
            with self.assertRaises(ConfigError):
                load_plan(self._write_plan(payload))

        with self.assertRaises(ConfigError):
            load_plan(self.root / "missing.json")

    def test_deploy_step_resolves_address_from_receipt(self) -> None:
        step = DeployContractStep("factory", "0x6080", self.client, self.settings)

        results = step.execute({})

        self.assertEqual(self.client.sent, [{"from": SENDER, "gasPrice": hex(5 * 10**9), "data": "0x6080"}])
        self.assertEqual(results[0].hash, "0xhash1")
        self.assertEqual(results[0].resolve({"contractAddress": FACTORY.upper().replace("0X", "0x")}), {"factory": FACTORY})
        with self.assertRaises(ValueError):
            results[0].resolve({"contractAddress": None})

    def test_recorded_step_submits_nothing(self) -> None:
        step = DeployContractStep("factory", "0x6080", self.client, self.settings)

        results = step.execute({"factory": FACTORY})

        self.assertEqual(self.client.sent, [])
        self.assertIsNone(results[0].hash)
        self.assertIn("already recorded", results[0].message)

    def test_call_step_renders_placeholders(self) -> None:
        step = ContractCallStep(
            "owner", "{{factory}}", "0x13af4035{{ownerAddress}}",
            self.client, self.settings, variables={"ownerAddress": OWNER},
        )

        results = step.execute({"factory": FACTORY})

        tx = self.client.sent[0]
        self.assertEqual(tx["to"], FACTORY)
        self.assertEqual(tx["data"], "0x13af4035" + "0" * 24 + "2" * 40)
        self.assertEqual(results[0].delta, {"owner": "0xhash1"})

    def test_call_step_requires_recorded_target(self) -> None:
        step = ContractCallStep("owner", "{{factory}}", "0x", self.client, self.settings)
        with self.assertRaises(ValueError):
            step.execute({})
        self.assertEqual(self.client.sent, [])

    def test_build_step_sequence_prefers_factory(self) -> None:
        config = AppConfig()
        config.network.from_address = SENDER
        config.deployment.steps_factory = f"{__name__}:build_fixture_steps"

        self.assertEqual(build_step_sequence(config, self.client), ["custom", SENDER])

    def test_build_step_sequence_requires_a_source(self) -> None:
        with self.assertRaises(ConfigError):
            build_step_sequence(AppConfig(), self.client)

    def test_bad_factory_reference(self) -> None:
        for target in ("no_colon", "chain_deployer.missing_module:build", f"{__name__}:SENDER"):
            with self.assertRaises(ConfigError):
                load_step_factory(target)


if __name__ == "__main__":
    unittest.main()

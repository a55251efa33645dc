"""示例：用 Python 定义步骤序列

    python -m chain_deployer deploy --steps examples.custom_steps:build \
        --json-rpc http://127.0.0.1:8545 --from 0x<node-managed account>
"""

from chain_deployer.orchestrator import StepResult
from chain_deployer.steps import FunctionStep, StepFactoryContext


def build(context: StepFactoryContext):
    client = context.client
    settings = context.settings

    def record_chain_id(state):
        return [StepResult(message="Recorded chain id", delta={"chainId": client.chain_id()})]

    def fund_owner(state):
        tx_hash = client.send_transaction(
            settings.build(to="0x1111111111111111111111111111111111111111", value=hex(10**16))
        )
        return [StepResult(message="Funded owner", hash=tx_hash, delta={"ownerFunded": tx_hash})]

    yield FunctionStep("chainId", record_chain_id, name="Record chain id")
    yield FunctionStep("ownerFunded", fund_owner, name="Fund owner account")

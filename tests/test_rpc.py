import threading
import time
import unittest

import requests
import rlp
from eth_account import Account

from chain_deployer.errors import (
    ConfigError,
    ConfirmationError,
    OperationRejectedError,
    SourceUnavailableError,
)
from chain_deployer.orchestrator import ConfirmationWaiter, PendingOperation
from chain_deployer.rpc import JsonRpcClient, LocalSigner, RpcConfirmationSource, RpcError, RpcTransportError


class FakeResponse:
    def __init__(self, payload=None, status_code=200, invalid_json=False):
        self.payload = payload
        self.status_code = status_code
        self.invalid_json = invalid_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if self.invalid_json:
            raise ValueError("Expecting value")
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []
        self.proxies = {}

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "body": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(*responses):
    session = FakeSession(responses)
    return JsonRpcClient("http://node.local:8545", timeout=7, session_factory=lambda: session)


class JsonRpcClientTests(unittest.TestCase):
    def test_call_returns_result(self) -> None:
        client = make_client(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": "0x10"}))

        self.assertEqual(client.block_number(), 16)
        request = client.session.requests[0]
        self.assertEqual(request["body"]["method"], "eth_blockNumber")
        self.assertEqual(request["body"]["params"], [])
        self.assertEqual(request["timeout"], 7)

    def test_request_ids_increase(self) -> None:
        client = make_client(
            FakeResponse({"result": "0x1"}),
            FakeResponse({"result": "0x1"}),
        )
        client.chain_id()
        client.chain_id()
        ids = [r["body"]["id"] for r in client.session.requests]
        self.assertEqual(ids, [1, 2])

    def test_error_object_raises_rpc_error(self) -> None:
        client = make_client(FakeResponse({"error": {"code": -32000, "message": "insufficient funds"}}))

        with self.assertRaises(RpcError) as ctx:
            client.send_transaction({"from": "0x" + "1" * 40})
        self.assertEqual(ctx.exception.code, -32000)
        self.assertIn("insufficient funds", str(ctx.exception))

    def test_transport_failures_are_transient(self) -> None:
        cases = [
            requests.ConnectionError("connection refused"),
            FakeResponse(status_code=502),
            FakeResponse(invalid_json=True),
            FakeResponse(["not", "an", "object"]),
        ]
        for response in cases:
            client = make_client(response)
            with self.assertRaises(RpcTransportError):
                client.block_number()
            self.assertTrue(issubclass(RpcTransportError, SourceUnavailableError))

    def test_send_transaction_returns_hash(self) -> None:
        client = make_client(FakeResponse({"result": "0xfeed"}))
        tx = {"from": "0x" + "1" * 40, "data": "0x6080"}

        self.assertEqual(client.send_transaction(tx), "0xfeed")
        self.assertEqual(client.session.requests[0]["body"]["params"], [tx])


class FakeChain:
    def __init__(self, receipts, head):
        self.receipts = receipts
        self.head = head

    def get_transaction_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)

    def block_number(self):
        return self.head


class RpcConfirmationSourceTests(unittest.TestCase):
    def test_unmined_transaction_has_no_depth(self) -> None:
        source = RpcConfirmationSource(FakeChain({}, head=100))
        self.assertEqual(source.check("0x1").depth, 0)

    def test_depth_counts_mined_block(self) -> None:
        receipt = {"blockNumber": hex(98), "status": "0x1", "contractAddress": "0x" + "a" * 40}
        source = RpcConfirmationSource(FakeChain({"0x1": receipt}, head=100))

        status = source.check("0x1")

        self.assertEqual(status.depth, 3)
        self.assertEqual(status.receipt, receipt)

    def test_reverted_transaction_is_rejected(self) -> None:
        receipt = {"blockNumber": hex(98), "status": "0x0"}
        source = RpcConfirmationSource(FakeChain({"0x1": receipt}, head=100))

        with self.assertRaises(OperationRejectedError):
            source.check("0x1")


class SlowNodeSession:
    """Never-mined receipts, each request taking `latency` seconds."""

    active = 0
    peak = 0
    lock = threading.Lock()

    def __init__(self, latency):
        self.latency = latency
        self.proxies = {}

    def post(self, url, json=None, headers=None, timeout=None):
        cls = SlowNodeSession
        with cls.lock:
            cls.active += 1
            cls.peak = max(cls.peak, cls.active)
        try:
            time.sleep(self.latency)
        finally:
            with cls.lock:
                cls.active -= 1
        return FakeResponse({"jsonrpc": "2.0", "id": json["id"], "result": None})


class ParallelPollingTests(unittest.TestCase):
    def test_batch_polls_node_in_parallel(self) -> None:
        SlowNodeSession.active = SlowNodeSession.peak = 0
        sessions = []

        def factory():
            session = SlowNodeSession(latency=0.1)
            sessions.append(session)
            return session

        client = JsonRpcClient("http://node.local:8545", session_factory=factory)
        waiter = ConfirmationWaiter(RpcConfirmationSource(client), poll_interval=0.05)
        operations = [
            PendingOperation(handle=f"0x{i:064x}", confirmations=2, timeout=0.3)
            for i in range(10)
        ]

        started = time.monotonic()
        with self.assertRaises(ConfirmationError):
            waiter.await_all(operations)
        elapsed = time.monotonic() - started

        self.assertGreater(SlowNodeSession.peak, 1)
        self.assertGreater(len(sessions), 1)
        # 失败时间与批次大小无关
        self.assertLess(elapsed, 0.3 + 0.7)


# Hardhat / Anvil development account #0
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class DevNodeSession:
    """Answers the calls a signing client makes, keyed by method."""

    def __init__(self, results):
        self.results = results
        self.requests = []
        self.proxies = {}

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append(json)
        result = self.results[json["method"]]
        if callable(result):
            result = result(json["params"])
        return FakeResponse({"jsonrpc": "2.0", "id": json["id"], "result": result})

    def params_of(self, method):
        return [r["params"] for r in self.requests if r["method"] == method]


def _decode_legacy(raw_hex):
    nonce, gas_price, gas, to, value, data, v, r, s = rlp.decode(bytes.fromhex(raw_hex[2:]))
    return {
        "nonce": int.from_bytes(nonce, "big"),
        "gasPrice": int.from_bytes(gas_price, "big"),
        "gas": int.from_bytes(gas, "big"),
        "to": "0x" + to.hex() if to else None,
        "data": "0x" + data.hex(),
        "v": int.from_bytes(v, "big"),
    }


class LocalSignerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = DevNodeSession({
            "eth_chainId": hex(31337),
            "eth_getTransactionCount": "0x5",
            "eth_estimateGas": hex(21000),
            "eth_gasPrice": hex(10**9),
            "eth_sendRawTransaction": lambda params: "0x" + "ab" * 32,
        })
        self.signer = LocalSigner(DEV_KEY)
        self.client = JsonRpcClient(
            "http://node.local:8545", signer=self.signer, session_factory=lambda: self.session
        )

    def test_signer_address_matches_key(self) -> None:
        self.assertEqual(self.signer.address, DEV_ADDRESS.lower())
        with self.assertRaises(ConfigError):
            LocalSigner("0x1234")

    def test_signed_transaction_is_sent_raw(self) -> None:
        target = "0x" + "aa" * 20
        tx_hash = self.client.send_transaction(
            {"from": DEV_ADDRESS.lower(), "to": target, "data": "0x13af4035"}
        )

        self.assertEqual(tx_hash, "0x" + "ab" * 32)
        self.assertEqual(self.session.params_of("eth_sendTransaction"), [])
        raw = self.session.params_of("eth_sendRawTransaction")[0][0]
        self.assertEqual(Account.recover_transaction(raw), DEV_ADDRESS)

        decoded = _decode_legacy(raw)
        self.assertEqual(decoded["nonce"], 5)
        self.assertEqual(decoded["gas"], 21000)
        self.assertEqual(decoded["gasPrice"], 10**9)
        self.assertEqual(decoded["to"], target)
        self.assertEqual(decoded["data"], "0x13af4035")
        # EIP-155 replay protection for chain 31337
        self.assertIn(decoded["v"], (31337 * 2 + 35, 31337 * 2 + 36))

    def test_nonce_advances_when_node_lags(self) -> None:
        self.client.send_transaction({"data": "0x6080"})
        self.client.send_transaction({"data": "0x6080", "gasPrice": hex(2 * 10**9)})

        raws = [params[0] for params in self.session.params_of("eth_sendRawTransaction")]
        decoded = [_decode_legacy(raw) for raw in raws]
        self.assertEqual([d["nonce"] for d in decoded], [5, 6])
        # 合约创建没有 to
        self.assertIsNone(decoded[0]["to"])
        self.assertEqual(decoded[1]["gasPrice"], 2 * 10**9)
        # chain id is fetched once
        self.assertEqual(len(self.session.params_of("eth_chainId")), 1)

    def test_sender_mismatch_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.client.send_transaction({"from": "0x" + "1" * 40, "data": "0x"})
        self.assertEqual(self.session.params_of("eth_sendRawTransaction"), [])


if __name__ == "__main__":
    unittest.main()

"""Minimal JSON-RPC client for Ethereum-compatible nodes."""

from __future__ import annotations

import itertools
import logging
import os
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import requests

from ..errors import DeployerError, SourceUnavailableError

if TYPE_CHECKING:
    from ..config import NetworkConfig
    from .signer import LocalSigner

logger = logging.getLogger(__name__)


class RpcError(DeployerError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: Optional[int], message: str) -> None:
        self.method = method
        self.code = code
        super().__init__(f"{method} failed ({code}): {message}")


class RpcTransportError(SourceUnavailableError):
    """Network or HTTP failure while talking to the node."""


class JsonRpcClient:
    """
    JSON-RPC client over HTTP.

    The confirmation waiter polls from several worker threads at once, so
    every thread gets its own requests.Session and requests run in parallel.

    With a `signer`, transactions are signed locally and submitted with
    eth_sendRawTransaction; otherwise the node's unlocked account sends them.
    """

    def __init__(
        self,
        url: str,
        timeout: int = 30,
        proxy: Optional[str] = None,
        signer: Optional["LocalSigner"] = None,
        session_factory: Optional[Callable[[], requests.Session]] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.signer = signer
        self._session_factory = session_factory or requests.Session
        self._local = threading.local()
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

        # Set up proxy if configured
        self.proxy = proxy or os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
        if self.proxy:
            logger.info("JSON-RPC client using proxy: %s", self.proxy)

    @classmethod
    def from_config(cls, config: "NetworkConfig") -> "JsonRpcClient":
        signer = None
        if config.private_key:
            from .signer import LocalSigner

            signer = LocalSigner(config.private_key)
        return cls(
            url=config.json_rpc_url,
            timeout=config.request_timeout,
            proxy=config.proxy,
            signer=signer,
        )

    @property
    def session(self) -> requests.Session:
        """当前线程专用的 Session（requests.Session 不保证线程安全）"""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            if self.proxy:
                session.proxies = {"http": self.proxy, "https": self.proxy}
            self._local.session = session
        return session

    def _next_id(self) -> int:
        with self._ids_lock:
            return next(self._ids)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Invoke `method` and return its `result`.

        Raises:
            RpcError: if the node returned an error object
            RpcTransportError: on network, HTTP or decoding failures
        """
        body = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params or [],
        }
        try:
            response = self.session.post(
                self.url,
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as exc:
            raise RpcTransportError(f"{method} request failed: {exc}") from exc
        except ValueError as exc:
            raise RpcTransportError(f"{method} returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise RpcTransportError(f"{method} returned an unexpected payload")

        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(method, error.get("code"), str(error.get("message", "unknown error")))
            raise RpcError(method, None, str(error))

        return data.get("result")

    def _quantity(self, method: str, params: Optional[List[Any]] = None) -> int:
        result = self.call(method, params)
        if not isinstance(result, str):
            raise RpcError(method, None, f"unexpected result {result!r}")
        return int(result, 16)

    def block_number(self) -> int:
        return self._quantity("eth_blockNumber")

    def chain_id(self) -> int:
        return self._quantity("eth_chainId")

    def gas_price(self) -> int:
        return self._quantity("eth_gasPrice")

    def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return self._quantity("eth_estimateGas", [tx])

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return self._quantity("eth_getTransactionCount", [address, block])

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.call("eth_getTransactionReceipt", [tx_hash])

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        """发送交易，返回交易哈希

        有 signer 时本地签名后通过 eth_sendRawTransaction 提交，
        否则由节点托管账户（eth_sendTransaction）发送。
        """
        if self.signer is not None:
            method = "eth_sendRawTransaction"
            params: List[Any] = [self.signer.sign(tx, self)]
        else:
            method = "eth_sendTransaction"
            params = [tx]

        tx_hash = self.call(method, params)
        if not isinstance(tx_hash, str):
            raise RpcError(method, None, f"unexpected result {tx_hash!r}")
        logger.debug("Submitted transaction %s", tx_hash)
        return tx_hash

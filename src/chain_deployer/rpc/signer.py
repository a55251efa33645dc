"""Local transaction signing with a private key."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Dict, Optional

from eth_account import Account
from eth_utils import to_checksum_address, to_hex

from ..utils.validation import validate_private_key

if TYPE_CHECKING:
    from .client import JsonRpcClient

logger = logging.getLogger(__name__)

_QUANTITY_FIELDS = ("gas", "gasPrice", "value", "nonce")


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


class LocalSigner:
    """
    私钥签名器

    按节点返回的 pending nonce 与本地计数的较大值分配 nonce，
    保证同一进程内连续发送的交易不会复用 nonce。
    """

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(validate_private_key(private_key))
        self.address = self._account.address.lower()
        self._chain_id: Optional[int] = None
        self._next_nonce: Optional[int] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address!r})"

    def sign(self, tx: Dict[str, Any], client: "JsonRpcClient") -> str:
        """Fill in chain id, nonce, gas and gas price, then sign `tx`.

        Returns:
            The raw signed transaction as 0x-prefixed hex
        """
        sender = tx.get("from")
        if sender and sender.lower() != self.address:
            raise ValueError(
                f"Transaction sender {sender} does not match the signing key ({self.address})"
            )

        fields: Dict[str, Any] = {}
        for key, value in tx.items():
            if key == "from" or value is None:
                continue
            fields[key] = _as_int(value) if key in _QUANTITY_FIELDS else value
        if "to" in fields:
            fields["to"] = to_checksum_address(fields["to"])
        fields.setdefault("value", 0)
        fields.setdefault("data", "0x")

        if "gasPrice" not in fields:
            fields["gasPrice"] = client.gas_price()
        if "gas" not in fields:
            estimate = {"from": self.address, "data": fields["data"], "value": hex(fields["value"])}
            if "to" in fields:
                estimate["to"] = fields["to"]
            fields["gas"] = client.estimate_gas(estimate)

        if self._chain_id is None:
            self._chain_id = client.chain_id()
        fields["chainId"] = self._chain_id

        with self._lock:
            nonce = client.get_transaction_count(self.address, "pending")
            if self._next_nonce is not None:
                nonce = max(nonce, self._next_nonce)
            fields["nonce"] = nonce
            signed = self._account.sign_transaction(fields)
            self._next_nonce = nonce + 1

        logger.debug("Signed transaction with nonce %d for chain %d", nonce, self._chain_id)
        return to_hex(signed.raw_transaction)

"""Confirmation source backed by a JSON-RPC node."""

from __future__ import annotations

import logging

from ..errors import OperationRejectedError
from ..orchestrator.confirmation import ConfirmationSource
from ..orchestrator.models import OperationStatus
from .client import JsonRpcClient

logger = logging.getLogger(__name__)


class RpcConfirmationSource(ConfirmationSource):
    """Derives confirmation depth from the receipt's block and the chain head."""

    def __init__(self, client: JsonRpcClient) -> None:
        self.client = client

    def check(self, handle: str) -> OperationStatus:
        receipt = self.client.get_transaction_receipt(handle)
        if not receipt or not receipt.get("blockNumber"):
            # 尚未上链
            return OperationStatus(depth=0)

        status = receipt.get("status")
        if status is not None and int(status, 16) == 0:
            raise OperationRejectedError(handle, "transaction reverted")

        mined_in = int(receipt["blockNumber"], 16)
        head = self.client.block_number()
        depth = max(head - mined_in + 1, 0)
        return OperationStatus(depth=depth, receipt=receipt)

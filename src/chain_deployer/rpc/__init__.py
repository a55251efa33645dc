"""JSON-RPC access to the target network."""

from .client import JsonRpcClient, RpcError, RpcTransportError
from .signer import LocalSigner
from .source import RpcConfirmationSource

__all__ = [
    "JsonRpcClient",
    "LocalSigner",
    "RpcError",
    "RpcTransportError",
    "RpcConfirmationSource",
]

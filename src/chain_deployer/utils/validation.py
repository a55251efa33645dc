"""Validation of startup inputs (addresses, keys, hashes, URLs)."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from eth_account import Account
from eth_utils import is_checksum_address

from ..errors import ConfigError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX_DATA_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")
_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def normalize_address(value: str, label: str = "address") -> str:
    """校验并规范化 20 字节地址

    全小写或全大写的地址只校验格式；大小写混合的地址必须通过 EIP-55 校验。
    """
    if not isinstance(value, str) or not _ADDRESS_RE.match(value.strip()):
        raise ConfigError(f"Invalid {label}: {value!r}")
    address = value.strip()
    body = address[2:]
    if body != body.lower() and body != body.upper() and not is_checksum_address(address):
        raise ConfigError(f"Invalid {label}: bad EIP-55 checksum in {value!r}")
    return address.lower()


def is_address(value: object) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def validate_hex_data(value: str, label: str = "data") -> str:
    if not isinstance(value, str) or not _HEX_DATA_RE.match(value):
        raise ConfigError(f"Invalid {label}: expected 0x-prefixed hex bytes")
    return value


def validate_private_key(value: str) -> str:
    # 不在错误信息中回显私钥
    if not isinstance(value, str) or not _PRIVATE_KEY_RE.match(value.strip()):
        raise ConfigError("Invalid private key: expected 32 bytes of hex")
    key = value.strip()
    return key if key.startswith("0x") else "0x" + key


def private_key_address(value: str) -> str:
    """私钥对应的地址（小写）"""
    try:
        return Account.from_key(validate_private_key(value)).address.lower()
    except ValueError as exc:
        raise ConfigError("Invalid private key: not a valid secp256k1 key") from exc


def validate_rpc_url(value: str) -> str:
    """JSON RPC URL 必须是 http(s) 地址"""
    parsed = urlparse(value or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"Invalid JSON RPC URL: {value!r}")
    return value

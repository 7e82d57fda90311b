# ingestion/rpc.py
from __future__ import annotations

import re
from typing import Any, List

import requests

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class RpcError(RuntimeError):
    pass


class RpcTransportError(RpcError):
    pass


def rpc_post(url: str, method: str, params: List[Any], timeout: float = 15.0) -> Any:
    """
    POST one JSON-RPC 2.0 request and return its result field directly.
    Any error member in the envelope is a hard failure for this endpoint.
    """
    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
    try:
        resp = requests.post(url, json=payload, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except requests.RequestException as e:
        raise RpcTransportError(f"RPC transport failed for {method} url={url}: {e}") from e
    except ValueError as e:
        raise RpcError(f"RPC response for {method} url={url} is not JSON") from e

    if not isinstance(data, dict):
        raise RpcError(f"RPC response for {method} url={url} is not an object")
    if data.get("error") is not None:
        err = data["error"]
        if isinstance(err, dict):
            raise RpcError(f"RPC error for {method} url={url} code={err.get('code')} msg={err.get('message')}")
        raise RpcError(f"RPC error for {method} url={url} err={err}")
    if "result" not in data:
        raise RpcError(f"RPC response for {method} url={url} has no result")
    return data["result"]


def normalize_address(addr: str) -> str:
    """
    Returns lowercased 0x-prefixed 40-hex address or raises ValueError.
    Accepts inputs with extra whitespace/quotes.
    """
    if not addr or not isinstance(addr, str):
        raise ValueError(f"Invalid address: {addr!r}")
    a = addr.strip().strip('"').strip("'")
    h = a[2:] if a[:2] in ("0x", "0X") else a
    if len(h) != 40 or not _HEX_RE.match(h):
        raise ValueError(f"Invalid address: {addr!r} (need 20-byte hex, e.g. 0x...40 hex chars)")
    return "0x" + h.lower()


def address_topic(addr: str) -> str:
    """The 32-byte topic an indexed address parameter is logged as."""
    return "0x" + "0" * 24 + normalize_address(addr)[2:]


def normalize_tx_hash(tx_hash: str) -> str:
    if not isinstance(tx_hash, str) or not _TX_HASH_RE.match(tx_hash.strip()):
        raise ValueError("tx_hash must be a 0x prefixed 32-byte hex string")
    return tx_hash.strip().lower()


__all__ = [
    "RpcError",
    "RpcTransportError",
    "rpc_post",
    "normalize_address",
    "address_topic",
    "normalize_tx_hash",
]

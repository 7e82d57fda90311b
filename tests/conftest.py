import threading
from typing import Dict, List, Optional, Set

import pytest
import requests
from eth_abi import encode

from decoding.events import EVENT_TOPICS
from ingestion.endpoints import Endpoint
from ingestion.fetcher import LogFetcher
from ingestion.health import EndpointHealthTracker

CONTRACT = "0x6a242970f55e050cb54da489751d562083abd4b7"
WALLET = "0x" + "11" * 20
OTHER = "0x" + "22" * 20
TOKEN = "0x" + "33" * 20


def addr_topic(addr: str) -> str:
    return "0x" + "0" * 24 + addr[2:].lower()


def tx(n: int) -> str:
    return "0x" + f"{n:064x}"


def game_started_data(code: str, token: str = TOKEN, buy_in: int = 10**18, max_players: int = 8, judges=()) -> str:
    return "0x" + encode(
        ["string", "address", "uint256", "uint256", "address[]"],
        [code, token, buy_in, max_players, list(judges)],
    ).hex()


def player_joined_data(code: str, token: str = TOKEN, amount: int = 5) -> str:
    return "0x" + encode(["string", "address", "uint256"], [code, token, amount]).hex()


class FakeResp:
    def __init__(self, json_data, status_code=200):
        self._json = json_data
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        return self._json


class FakeRpc:
    """
    Minimal JSON-RPC node shared by every endpoint URL.
    eth_getLogs honours address, block range and positional topic filters.
    """

    def __init__(self) -> None:
        self.head = 1_000_000
        self.logs: List[dict] = []
        self.receipts: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        self.rpc_error_urls: Set[str] = set()
        self.http_error_urls: Set[str] = set()
        self.failing_methods: Set[str] = set()
        # url -> number of successful calls before it starts failing
        self.fail_after: Dict[str, int] = {}
        self._lock = threading.Lock()

    def add_log(
        self,
        block: int,
        topics: List[Optional[str]],
        data: str = "0x",
        tx_hash: Optional[str] = None,
        tx_index: int = 0,
        log_index: int = 0,
        address: str = CONTRACT,
    ) -> dict:
        lg = {
            "address": address,
            "topics": topics,
            "data": data,
            "blockNumber": hex(block),
            "transactionHash": tx_hash or tx(block * 1000 + log_index),
            "transactionIndex": hex(tx_index),
            "logIndex": hex(log_index),
        }
        self.logs.append(lg)
        return lg

    def add_game_started(self, code: str, host: str, block: int, **kw) -> dict:
        return self.add_log(block, [EVENT_TOPICS["GameStarted"], addr_topic(host)], game_started_data(code), **kw)

    def add_player_joined(self, code: str, player: str, block: int, **kw) -> dict:
        return self.add_log(block, [EVENT_TOPICS["PlayerJoined"], addr_topic(player)], player_joined_data(code), **kw)

    def add_receipt(self, tx_hash: str, block: int, logs: List[dict] = (), status: str = "0x1") -> None:
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "blockNumber": hex(block),
            "status": status,
            "logs": list(logs),
        }

    def calls_for(self, method: str, url: Optional[str] = None) -> List[tuple]:
        with self._lock:
            return [c for c in self.calls if c[1] == method and (url is None or c[0] == url)]

    def _filter(self, q: dict) -> List[dict]:
        lo, hi = int(q["fromBlock"], 16), int(q["toBlock"], 16)
        out = []
        for lg in self.logs:
            if not lo <= int(lg["blockNumber"], 16) <= hi:
                continue
            if q.get("address") and lg["address"].lower() != q["address"].lower():
                continue
            ok = True
            for i, t in enumerate(q.get("topics") or []):
                if t is None:
                    continue
                if i >= len(lg["topics"]) or lg["topics"][i].lower() != t.lower():
                    ok = False
                    break
            if ok:
                out.append(dict(lg))
        return out

    def post(self, url, json, timeout):
        method, params = json["method"], json["params"]
        with self._lock:
            self.calls.append((url, method, params))
            n_url = sum(1 for c in self.calls if c[0] == url)
        if url in self.http_error_urls:
            return FakeResp({}, status_code=503)
        if (
            url in self.rpc_error_urls
            or method in self.failing_methods
            or (url in self.fail_after and n_url > self.fail_after[url])
        ):
            return FakeResp({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}})
        if method == "eth_blockNumber":
            result = hex(self.head)
        elif method == "eth_getLogs":
            result = self._filter(params[0])
        elif method == "eth_getTransactionReceipt":
            result = self.receipts.get(params[0])
        else:
            return FakeResp({"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}})
        return FakeResp({"jsonrpc": "2.0", "id": 1, "result": result})


@pytest.fixture
def fake_rpc(monkeypatch):
    rpc = FakeRpc()
    monkeypatch.setattr(requests, "post", rpc.post)
    return rpc


@pytest.fixture
def endpoints():
    return [
        Endpoint("Alpha", "https://alpha.example", 10_000, requests_per_window=10_000),
        Endpoint("Beta", "https://beta.example", 2_000, requests_per_window=10_000),
    ]


@pytest.fixture
def make_fetcher(endpoints):
    def _make(eps=None, **kw) -> LogFetcher:
        tracker = EndpointHealthTracker(eps or endpoints)
        opts = {"request_delay": 0.0, "sleep": lambda s: None}
        opts.update(kw)
        return LogFetcher(tracker, **opts)

    return _make

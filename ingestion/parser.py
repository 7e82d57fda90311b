"""
ingestion.parser
Parse raw eth_getLogs / receipt log JSON into LogEntry values.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from common.utils import hex_to_int


@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: Tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    transaction_index: int
    log_index: int

    @property
    def key(self) -> Tuple[int, int, int]:
        # unique per on-chain log
        return (self.block_number, self.transaction_index, self.log_index)

    @property
    def topic0(self) -> str:
        return self.topics[0] if self.topics else ""


def parse_log(log_json: dict) -> LogEntry:
    if not isinstance(log_json, dict) or "topics" not in log_json:
        raise ValueError("Invalid log JSON")
    for f in ("blockNumber", "transactionIndex", "logIndex"):
        if log_json.get(f) is None:
            raise ValueError(f"Log JSON missing {f}")
    try:
        return LogEntry(
            address=str(log_json.get("address") or "").lower(),
            topics=tuple(str(t).lower() for t in (log_json.get("topics") or [])),
            data=str(log_json.get("data") or "0x").lower(),
            block_number=hex_to_int(log_json["blockNumber"]),
            transaction_hash=str(log_json.get("transactionHash") or "").lower(),
            transaction_index=hex_to_int(log_json["transactionIndex"]),
            log_index=hex_to_int(log_json["logIndex"]),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid log JSON: {e}") from e


def parse_logs(raw_logs: Iterable[dict]) -> List[LogEntry]:
    return [parse_log(lg) for lg in raw_logs or []]


def dedupe_logs(logs: Iterable[LogEntry]) -> List[LogEntry]:
    """
    Collapse entries sharing (blockNumber, transactionIndex, logIndex); the
    first occurrence wins. Output is sorted by that key.
    """
    seen = {}
    for lg in logs:
        seen.setdefault(lg.key, lg)
    return [seen[k] for k in sorted(seen)]


@dataclass(frozen=True)
class TransactionReceipt:
    transaction_hash: str
    block_number: int
    # 1 success, 0 reverted, None for pre-byzantium receipts
    status: Optional[int]
    logs: Tuple[LogEntry, ...]

    @property
    def reverted(self) -> bool:
        return self.status == 0


def parse_receipt(receipt_json: dict) -> TransactionReceipt:
    if not isinstance(receipt_json, dict) or "transactionHash" not in receipt_json \
            or receipt_json.get("blockNumber") is None:
        raise ValueError("Invalid receipt JSON")
    status = receipt_json.get("status")
    return TransactionReceipt(
        transaction_hash=str(receipt_json["transactionHash"]).lower(),
        block_number=hex_to_int(receipt_json["blockNumber"]),
        status=None if status is None else hex_to_int(status),
        logs=tuple(parse_logs(receipt_json.get("logs") or [])),
    )

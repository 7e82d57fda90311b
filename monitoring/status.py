# monitoring/status.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TxState(str, Enum):
    PENDING = "pending"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMEOUT = "timeout"


TERMINAL_STATES = frozenset({TxState.COMPLETE, TxState.FAILED, TxState.TIMEOUT})


class CodeSource(str, Enum):
    """Where a completed status got its game code from."""

    DIRECT = "direct"    # decoded from the receipt's own logs
    SEARCH = "search"    # found by a follow-up log search
    DERIVED = "derived"  # computed from the transaction hash


@dataclass(frozen=True)
class TransactionStatus:
    state: TxState
    tx_hash: str
    game_code: Optional[str] = None
    block_number: Optional[int] = None
    source: Optional[CodeSource] = None
    strategy: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_fallback(self) -> bool:
        return self.source in (CodeSource.SEARCH, CodeSource.DERIVED)


__all__ = ["TxState", "TERMINAL_STATES", "CodeSource", "TransactionStatus"]

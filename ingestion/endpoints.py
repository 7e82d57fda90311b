# ingestion/endpoints.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, TYPE_CHECKING

from common.utils import chunked

if TYPE_CHECKING:
    from common.settings import Settings


@dataclass(frozen=True)
class Endpoint:
    name: str
    url: str
    max_block_range: int
    requests_per_window: int = 10
    window_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_block_range <= 0:
            raise ValueError(f"endpoint {self.name}: max_block_range must be positive")
        if self.requests_per_window <= 0 or self.window_seconds <= 0:
            raise ValueError(f"endpoint {self.name}: rate window must be positive")


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    def __post_init__(self) -> None:
        if not isinstance(self.from_block, int) or not isinstance(self.to_block, int):
            raise ValueError("from_block and to_block must be integers")
        if self.from_block < 0 or self.to_block < self.from_block:
            raise ValueError(f"invalid block range [{self.from_block}, {self.to_block}]")

    @property
    def size(self) -> int:
        return self.to_block - self.from_block + 1

    def split(self, capacity: int) -> List["BlockRange"]:
        """Contiguous, non-overlapping chunks of at most `capacity` blocks."""
        return [BlockRange(s, e) for s, e in chunked(self.from_block, self.to_block, capacity)]

    def __str__(self) -> str:
        return f"[{self.from_block}, {self.to_block}]"


# Public Base mainnet endpoints, in preference order.
# Capacities come from the "block range too large" limits each provider enforces.
DEFAULT_ENDPOINTS: List[Endpoint] = [
    Endpoint("Base Official", "https://mainnet.base.org", 10_000, 20, 1.0),
    Endpoint("PublicNode", "https://base.publicnode.com", 50_000, 30, 1.0),
    Endpoint("LlamaRPC", "https://base.llamarpc.com", 1_000, 40, 1.0),
    Endpoint("Alchemy Demo", "https://base-mainnet.g.alchemy.com/v2/demo", 2_000, 10, 1.0),
    Endpoint("MeowRPC", "https://base.meowrpc.com", 5_000, 20, 1.0),
]


def build_registry(settings: "Settings") -> List[Endpoint]:
    configured = [
        Endpoint(
            name=e.name,
            url=e.url,
            max_block_range=e.max_block_range,
            requests_per_window=e.requests_per_window,
            window_seconds=e.window_seconds,
        )
        for e in settings.rpc.endpoints
    ]
    return configured or list(DEFAULT_ENDPOINTS)


__all__ = ["Endpoint", "BlockRange", "DEFAULT_ENDPOINTS", "build_registry"]

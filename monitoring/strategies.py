# monitoring/strategies.py
"""
Ordered strategies for recovering the game code a creation transaction
produced. Each strategy takes the extraction context and returns a code or
None; a FetchFailed inside one only means "no result" and the driver moves
on. When every strategy comes back empty the code is derived from the
transaction hash, so callers always get one.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from decoding.events import GAME_STARTED_TOPIC
from decoding.game_codes import derive_fallback_code
from discovery.games import code_from_log
from ingestion.endpoints import BlockRange
from ingestion.fetcher import FetchFailed, LogFetcher
from ingestion.parser import LogEntry, TransactionReceipt
from monitoring.status import CodeSource

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class ExtractionContext:
    tx_hash: str
    submitter: str
    receipt: TransactionReceipt
    contract_address: str
    fetcher: LogFetcher
    cancel: threading.Event
    sleep: Sleep = asyncio.sleep
    poll_delays: Sequence[float] = (5, 10, 15, 20, 30)
    poll_radii: Sequence[int] = (5, 10, 20, 30, 50)
    creation_topic: str = GAME_STARTED_TOPIC

    async def fetch(self, block_range: BlockRange, **kwargs) -> List[LogEntry]:
        # the fetcher blocks; run it off the event loop
        return await asyncio.to_thread(
            self.fetcher.fetch_logs, self.contract_address, block_range, cancel=self.cancel, **kwargs
        )

    def code_in(self, logs) -> Optional[str]:
        for lg in logs:
            if lg.topic0 != self.creation_topic or lg.transaction_hash != self.tx_hash:
                continue
            code = code_from_log(lg)
            if code:
                return code
        return None


Strategy = Callable[[ExtractionContext], Awaitable[Optional[str]]]


async def from_receipt_logs(ctx: ExtractionContext) -> Optional[str]:
    return ctx.code_in(ctx.receipt.logs)


async def from_block_events(ctx: ExtractionContext) -> Optional[str]:
    block = ctx.receipt.block_number
    logs = await ctx.fetch(BlockRange(block, block), event_topic=ctx.creation_topic)
    return ctx.code_in(logs)


async def from_patient_polling(ctx: ExtractionContext) -> Optional[str]:
    block = ctx.receipt.block_number
    attempts = list(zip(ctx.poll_delays, ctx.poll_radii))
    for i, (delay, radius) in enumerate(attempts, start=1):
        await ctx.sleep(delay)
        window = BlockRange(max(0, block - radius), block + radius)
        try:
            logs = await ctx.fetch(window, involved_address=ctx.submitter, event_topic=ctx.creation_topic)
        except FetchFailed as e:
            logger.info("Polling attempt %d/%d for %s inconclusive: %s", i, len(attempts), ctx.tx_hash, e)
            continue
        code = ctx.code_in(logs)
        if code:
            logger.info("Polling attempt %d/%d found %s", i, len(attempts), code)
            return code
    return None


DEFAULT_STRATEGIES: List[Tuple[str, CodeSource, Strategy]] = [
    ("receipt_logs", CodeSource.DIRECT, from_receipt_logs),
    ("block_events", CodeSource.SEARCH, from_block_events),
    ("patient_polling", CodeSource.SEARCH, from_patient_polling),
]


async def extract_game_code(
    ctx: ExtractionContext,
    strategies: Sequence[Tuple[str, CodeSource, Strategy]] = DEFAULT_STRATEGIES,
) -> Tuple[str, CodeSource, str]:
    """Run strategies in order; returns (code, source, strategy name)."""
    for name, source, strategy in strategies:
        try:
            code = await strategy(ctx)
        except FetchFailed as e:
            logger.warning("Strategy %s for %s inconclusive: %s", name, ctx.tx_hash, e)
            continue
        if code:
            return code, source, name
        logger.debug("Strategy %s found nothing for %s", name, ctx.tx_hash)

    code = derive_fallback_code(ctx.tx_hash)
    logger.warning("No game code found for %s, derived %s from the hash", ctx.tx_hash, code)
    return code, CodeSource.DERIVED, "derived"


__all__ = [
    "ExtractionContext",
    "Strategy",
    "from_receipt_logs",
    "from_block_events",
    "from_patient_polling",
    "DEFAULT_STRATEGIES",
    "extract_game_code",
]

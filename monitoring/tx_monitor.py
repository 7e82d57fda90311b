# monitoring/tx_monitor.py
"""
Follows a submitted game creation transaction through

    pending -> confirming -> confirmed -> extracting -> complete

with confirming and extracting able to end in failed or timeout. Every
transition is yielded as a TransactionStatus, so a caller (or a test) can
drive the machine step by step.

Usage:
    monitor = TransactionMonitor.from_settings(settings, fetcher)
    async for status in monitor.watch(tx_hash, host_address):
        ...
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import AsyncIterator, Callable, Optional, Sequence, Tuple

from common.settings import Settings
from ingestion.fetcher import FetchFailed, LogFetcher
from ingestion.parser import TransactionReceipt
from ingestion.rpc import normalize_address, normalize_tx_hash
from monitoring.status import CodeSource, TransactionStatus, TxState
from monitoring.strategies import DEFAULT_STRATEGIES, ExtractionContext, Sleep, Strategy, extract_game_code

logger = logging.getLogger(__name__)


class TransactionMonitor:
    def __init__(
        self,
        fetcher: LogFetcher,
        contract_address: str,
        receipt_timeout: float = 180.0,
        overall_timeout: float = 420.0,
        receipt_poll_interval: float = 2.0,
        poll_delays: Sequence[float] = (5, 10, 15, 20, 30),
        poll_radii: Sequence[int] = (5, 10, 20, 30, 50),
        strategies: Sequence[Tuple[str, CodeSource, Strategy]] = DEFAULT_STRATEGIES,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._contract = normalize_address(contract_address)
        self._receipt_timeout = receipt_timeout
        self._overall_timeout = overall_timeout
        self._receipt_poll_interval = receipt_poll_interval
        self._poll_delays = tuple(poll_delays)
        self._poll_radii = tuple(poll_radii)
        self._strategies = list(strategies)
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: LogFetcher, **kwargs) -> "TransactionMonitor":
        m = settings.monitor
        opts = dict(
            receipt_timeout=m.receipt_timeout_seconds,
            overall_timeout=m.overall_timeout_seconds,
            receipt_poll_interval=m.receipt_poll_interval_seconds,
            poll_delays=m.poll_delays_seconds,
            poll_radii=m.poll_radii,
        )
        opts.update(kwargs)
        return cls(fetcher, settings.contract.address, **opts)

    @property
    def receipt_timeout(self) -> float:
        return self._receipt_timeout

    async def _wait_for_receipt(self, tx_hash: str, cancel: threading.Event) -> TransactionReceipt:
        while True:
            try:
                receipt = await asyncio.to_thread(self._fetcher.get_transaction_receipt, tx_hash, cancel)
            except FetchFailed as e:
                logger.warning("Receipt lookup for %s inconclusive: %s", tx_hash, e)
                receipt = None
            if receipt is not None:
                return receipt
            await self._sleep(self._receipt_poll_interval)

    async def watch(
        self,
        tx_hash: str,
        submitter: str,
        receipt_timeout: Optional[float] = None,
    ) -> AsyncIterator[TransactionStatus]:
        tx_hash = normalize_tx_hash(tx_hash)
        submitter = normalize_address(submitter)
        receipt_timeout = self._receipt_timeout if receipt_timeout is None else receipt_timeout

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._overall_timeout
        # stops fetches still running in worker threads once we stop waiting on them
        cancel = threading.Event()

        def status(state: TxState, **kw) -> TransactionStatus:
            return TransactionStatus(state=state, tx_hash=tx_hash, **kw)

        try:
            yield status(TxState.PENDING)
            yield status(TxState.CONFIRMING)
            try:
                receipt = await asyncio.wait_for(
                    self._wait_for_receipt(tx_hash, cancel),
                    timeout=max(0.0, min(receipt_timeout, deadline - loop.time())),
                )
            except asyncio.TimeoutError:
                logger.warning("Receipt for %s not seen within %.0fs", tx_hash, receipt_timeout)
                yield status(TxState.TIMEOUT, error=f"Transaction confirmation timed out after {receipt_timeout:.0f}s")
                return

            block = receipt.block_number
            if receipt.reverted:
                yield status(TxState.FAILED, block_number=block, error="Transaction reverted")
                return
            logger.info("Transaction %s confirmed in block %d", tx_hash, block)
            yield status(TxState.CONFIRMED, block_number=block)
            yield status(TxState.EXTRACTING, block_number=block)

            ctx = ExtractionContext(
                tx_hash=tx_hash,
                submitter=submitter,
                receipt=receipt,
                contract_address=self._contract,
                fetcher=self._fetcher,
                cancel=cancel,
                sleep=self._sleep,
                poll_delays=self._poll_delays,
                poll_radii=self._poll_radii,
            )
            try:
                code, source, strategy = await asyncio.wait_for(
                    extract_game_code(ctx, self._strategies),
                    timeout=max(0.0, deadline - loop.time()),
                )
            except asyncio.TimeoutError:
                yield status(
                    TxState.TIMEOUT,
                    block_number=block,
                    error=f"Game code extraction exceeded the {self._overall_timeout:.0f}s monitoring limit",
                )
                return

            yield status(
                TxState.COMPLETE,
                game_code=code,
                block_number=block,
                source=source,
                strategy=strategy,
                error="Game code derived from the transaction hash" if source is CodeSource.DERIVED else None,
            )
        finally:
            cancel.set()

    monitor_transaction = watch

    async def run(
        self,
        tx_hash: str,
        submitter: str,
        on_status: Optional[Callable[[TransactionStatus], None]] = None,
        receipt_timeout: Optional[float] = None,
    ) -> TransactionStatus:
        """Drive watch() to its terminal status, reporting every transition."""
        final: Optional[TransactionStatus] = None
        async for st in self.watch(tx_hash, submitter, receipt_timeout=receipt_timeout):
            final = st
            if on_status is not None:
                on_status(st)
        if final is None or not final.is_terminal:
            raise RuntimeError(f"monitoring of {tx_hash} ended without a terminal status")
        return final


__all__ = ["TransactionMonitor"]

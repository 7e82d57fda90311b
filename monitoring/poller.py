# monitoring/poller.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from common.settings import Settings
from ingestion.rpc import normalize_tx_hash
from monitoring.status import TransactionStatus, TxState
from monitoring.tx_monitor import TransactionMonitor

logger = logging.getLogger(__name__)


class TransactionPoller:
    """
    Re-runs the monitor every `interval` seconds until it reaches complete or
    failed, or until `max_duration` has passed (then reports timeout).

    rules
    one stop() wakes a pending wait and no further attempt starts after it
    two an attempt in flight at stop() may finish but nothing it reports is delivered
    three only the first attempt waits the monitor's full receipt timeout,
      later ones use attempt_timeout
    """

    def __init__(
        self,
        monitor: TransactionMonitor,
        tx_hash: str,
        submitter: str,
        on_status: Callable[[TransactionStatus], None],
        interval: float = 30.0,
        max_duration: float = 180.0,
        attempt_timeout: float = 5.0,
    ) -> None:
        self._monitor = monitor
        self._tx_hash = normalize_tx_hash(tx_hash)
        self._submitter = submitter
        self._on_status = on_status
        self._interval = interval
        self._max_duration = max_duration
        self._attempt_timeout = attempt_timeout
        self._stopped = False
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._final: Optional[TransactionStatus] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        monitor: TransactionMonitor,
        tx_hash: str,
        submitter: str,
        on_status: Callable[[TransactionStatus], None],
        **kwargs,
    ) -> "TransactionPoller":
        m = settings.monitor
        opts = dict(
            interval=m.poller_interval_seconds,
            max_duration=m.poller_max_duration_seconds,
            attempt_timeout=m.poller_attempt_timeout_seconds,
        )
        opts.update(kwargs)
        return cls(monitor, tx_hash, submitter, on_status, **opts)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def max_duration(self) -> float:
        return self._max_duration

    @property
    def attempt_timeout(self) -> float:
        return self._attempt_timeout

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> asyncio.Task:
        if self._task is not None:
            raise RuntimeError("poller already started")
        logger.info("Polling %s every %.0fs for up to %.0fs", self._tx_hash, self._interval, self._max_duration)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def stop(self) -> None:
        if not self._stopped:
            logger.info("Poller for %s stopped", self._tx_hash)
        self._stopped = True
        self._wake.set()

    def cancel(self) -> None:
        """Stop and also abort the attempt in flight."""
        self.stop()
        if self._task is not None:
            self._task.cancel()

    async def wait(self) -> Optional[TransactionStatus]:
        """The last delivered terminal status, or None if stopped before one."""
        if self._task is None:
            return None
        try:
            # shielded so cancelling the waiter leaves the poller running
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        return self._final

    def _emit(self, status: TransactionStatus) -> None:
        if self._stopped:
            logger.debug("Discarding %s for %s after stop", status.state.value, self._tx_hash)
            return
        if status.is_terminal:
            self._final = status
        self._on_status(status)

    async def _attempt(self, receipt_timeout: float) -> Optional[TransactionStatus]:
        last = None
        async for st in self._monitor.watch(self._tx_hash, self._submitter, receipt_timeout=receipt_timeout):
            last = st
            # a per attempt timeout is not the poller's verdict
            if st.state is not TxState.TIMEOUT:
                self._emit(st)
        return last

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._max_duration
        attempt = 0
        while not self._stopped:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            attempt += 1
            receipt_timeout = self._monitor.receipt_timeout if attempt == 1 else self._attempt_timeout
            try:
                last = await asyncio.wait_for(self._attempt(min(receipt_timeout, remaining)), timeout=remaining)
            except asyncio.TimeoutError:
                break
            if last is not None and last.state in (TxState.COMPLETE, TxState.FAILED):
                return
            logger.debug("Attempt %d for %s ended with %s", attempt, self._tx_hash, last.state.value if last else None)

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=max(0.0, min(self._interval, deadline - loop.time())))
            except asyncio.TimeoutError:
                pass

        if not self._stopped:
            self._emit(TransactionStatus(
                state=TxState.TIMEOUT,
                tx_hash=self._tx_hash,
                error=f"Transaction monitoring timed out after {self._max_duration:.0f}s",
            ))


__all__ = ["TransactionPoller"]

# ingestion/fetcher.py
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Optional

from common.settings import Settings
from ingestion.endpoints import BlockRange, Endpoint, build_registry
from ingestion.health import EndpointHealthTracker
from ingestion.parser import LogEntry, TransactionReceipt, dedupe_logs, parse_log, parse_receipt
from ingestion.rpc import RpcError, address_topic, normalize_address, normalize_tx_hash, rpc_post

logger = logging.getLogger(__name__)

# topic positions an indexed address may occupy (topics[1..3])
ADDRESS_POSITIONS = (1, 2, 3)

# single calls are not range bound; rank with the smallest range
_POINT = BlockRange(0, 0)


class FetchFailed(RuntimeError):
    """Every ranked endpoint failed; the search is inconclusive."""

    def __init__(self, message: str, last_reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.last_reason = last_reason


class FetchCancelled(RuntimeError):
    pass


class _RateWindowFull(Exception):
    pass


def topic_filters(
    event_topic: Optional[str] = None,
    involved_address: Optional[str] = None,
) -> List[Optional[List[Optional[str]]]]:
    """
    Topic filters to issue per chunk. Without an address this is one filter
    (or None for no topic filter at all); with one it is one filter per
    indexed position, since the slot holding the address varies by event.
    """
    if involved_address is None:
        return [[event_topic]] if event_topic else [None]
    addr = address_topic(involved_address)
    return [[event_topic] + [None] * (pos - 1) + [addr] for pos in ADDRESS_POSITIONS]


class LogFetcher:
    """
    Chunked eth_getLogs with endpoint failover.

    An endpoint either answers every chunk and position query of a call or
    its partial results are thrown away and the next ranked endpoint starts
    over. Issuance order is deterministic: ascending chunks, positions 1 2 3.
    """

    def __init__(
        self,
        tracker: EndpointHealthTracker,
        timeout: float = 15.0,
        request_delay: float = 0.1,
        max_rate_wait: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._tracker = tracker
        self._timeout = timeout
        self._request_delay = request_delay
        self._max_rate_wait = max_rate_wait
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "LogFetcher":
        tracker = EndpointHealthTracker(
            build_registry(settings),
            failure_threshold=settings.rpc.failure_threshold,
            failure_cooldown=settings.rpc.failure_cooldown_seconds,
        )
        opts = {
            "timeout": settings.rpc.timeout,
            "request_delay": settings.rpc.request_delay_seconds,
            "max_rate_wait": settings.rpc.max_rate_wait_seconds,
        }
        opts.update(kwargs)
        return cls(tracker, **opts)

    @property
    def tracker(self) -> EndpointHealthTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise FetchCancelled("fetch cancelled")

    def _pause(self, seconds: float, cancel: Optional[threading.Event]) -> None:
        if seconds > 0:
            if cancel is not None:
                # returns early once cancel is set
                cancel.wait(seconds)
            else:
                self._sleep(seconds)
        self._check_cancel(cancel)

    def _send(self, endpoint: Endpoint, method: str, params: list, cancel: Optional[threading.Event]) -> Any:
        self._check_cancel(cancel)
        waited = 0.0
        # accounted at send time so fast failures still count against the window
        while True:
            wait = self._tracker.try_acquire(endpoint)
            if wait <= 0:
                break
            waited += wait
            if waited > self._max_rate_wait:
                raise _RateWindowFull(f"{endpoint.name}: rate window full for {wait:.2f}s")
            self._pause(wait, cancel)
        return rpc_post(endpoint.url, method, params, timeout=self._timeout)

    def _call(self, method: str, params: list, cancel: Optional[threading.Event] = None) -> Any:
        """One non-range call with the same rank, record and failover discipline."""
        ranked = self._tracker.rank_eligible(_POINT)
        if not ranked:
            raise FetchFailed(f"no eligible RPC endpoints for {method}", self._tracker.last_failure_reason())
        last_reason: Optional[str] = None
        for endpoint in ranked:
            try:
                result = self._send(endpoint, method, params, cancel)
            except _RateWindowFull as e:
                last_reason = str(e)
                continue
            except RpcError as e:
                last_reason = f"{endpoint.name}: {e}"
                self._tracker.record_failure(endpoint, str(e))
                logger.warning("%s failed on %s: %s", method, endpoint.name, e)
                continue
            self._tracker.record_success(endpoint)
            return result
        raise FetchFailed(f"{method} failed on all {len(ranked)} endpoints: {last_reason}", last_reason)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def get_block_number(self, cancel: Optional[threading.Event] = None) -> int:
        result = self._call("eth_blockNumber", [], cancel)
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise FetchFailed(f"eth_blockNumber returned {result!r}", str(e)) from e

    def get_transaction_receipt(
        self, tx_hash: str, cancel: Optional[threading.Event] = None
    ) -> Optional[TransactionReceipt]:
        """The mined receipt, or None while the transaction is still pending."""
        h = normalize_tx_hash(tx_hash)
        result = self._call("eth_getTransactionReceipt", [h], cancel)
        if result is None:
            return None
        try:
            return parse_receipt(result)
        except ValueError as e:
            raise FetchFailed(f"malformed receipt for {h}", str(e)) from e

    def fetch_logs(
        self,
        contract_address: str,
        block_range: BlockRange,
        involved_address: Optional[str] = None,
        event_topic: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[LogEntry]:
        if not isinstance(block_range, BlockRange):
            raise ValueError("block_range must be a BlockRange")
        contract = normalize_address(contract_address)
        filters = topic_filters(event_topic, involved_address)

        ranked = self._tracker.rank_eligible(block_range)
        if not ranked:
            raise FetchFailed(
                f"no eligible RPC endpoints for range {block_range}", self._tracker.last_failure_reason()
            )

        last_reason: Optional[str] = None
        for endpoint in ranked:
            try:
                raw = self._fetch_from(endpoint, contract, block_range, filters, cancel)
            except _RateWindowFull as e:
                # not the endpoint's fault; skip it for this call only
                last_reason = str(e)
                logger.info("Skipping %s for %s: %s", endpoint.name, block_range, e)
                continue
            except RpcError as e:
                last_reason = f"{endpoint.name}: {e}"
                self._tracker.record_failure(endpoint, str(e))
                logger.warning("eth_getLogs %s failed on %s, trying next endpoint: %s", block_range, endpoint.name, e)
                continue

            logs = dedupe_logs(raw)
            self._tracker.record_success(endpoint)
            logger.debug("eth_getLogs %s on %s: %d logs", block_range, endpoint.name, len(logs))
            return logs

        raise FetchFailed(
            f"eth_getLogs {block_range} failed on all {len(ranked)} endpoints: {last_reason}",
            last_reason,
        )

    def _fetch_from(
        self,
        endpoint: Endpoint,
        contract: str,
        block_range: BlockRange,
        filters: List[Optional[List[Optional[str]]]],
        cancel: Optional[threading.Event],
    ) -> List[LogEntry]:
        out: List[LogEntry] = []
        first = True
        for chunk in block_range.split(endpoint.max_block_range):
            for topics in filters:
                if not first:
                    self._pause(self._request_delay, cancel)
                first = False
                params = {
                    "address": contract,
                    "fromBlock": hex(chunk.from_block),
                    "toBlock": hex(chunk.to_block),
                }
                if topics is not None:
                    params["topics"] = topics
                result = self._send(endpoint, "eth_getLogs", [params], cancel)
                if not isinstance(result, list):
                    raise RpcError("RPC response for eth_getLogs did not return a list")
                try:
                    out.extend(parse_log(lg) for lg in result)
                except ValueError as e:
                    raise RpcError(f"malformed log in eth_getLogs response: {e}") from e
        return out


__all__ = [
    "ADDRESS_POSITIONS",
    "FetchFailed",
    "FetchCancelled",
    "LogFetcher",
    "topic_filters",
]

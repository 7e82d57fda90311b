# discovery/finder.py
from __future__ import annotations

import logging
from typing import Optional, Sequence

from ingestion.endpoints import BlockRange
from ingestion.fetcher import FetchFailed, LogFetcher
from ingestion.rpc import normalize_address

logger = logging.getLogger(__name__)

DEFAULT_WINDOWS = (10_000, 50_000, 100_000)


class ProgressiveInteractionFinder:
    """
    Finds the most recent block in which a wallet touched the contract by
    querying successively larger windows that end at the anchor block,
    instead of scanning the chain history.
    """

    def __init__(
        self,
        fetcher: LogFetcher,
        contract_address: str,
        windows: Sequence[int] = DEFAULT_WINDOWS,
    ) -> None:
        if not windows or any(w <= 0 for w in windows):
            raise ValueError("windows must be a non empty sequence of positive sizes")
        self._fetcher = fetcher
        self._contract = normalize_address(contract_address)
        self._windows = tuple(windows)

    @property
    def windows(self):
        return self._windows

    def find_last_interaction(self, wallet: str, current_block: Optional[int] = None) -> Optional[int]:
        """
        Block number of the wallet's latest log at or before `current_block`
        (the chain head when None), or None when no window has any.
        """
        wallet = normalize_address(wallet)
        if current_block is None:
            current_block = self._fetcher.get_block_number()
        if current_block <= 0:
            return None

        for size in self._windows:
            window = BlockRange(max(0, current_block - size), current_block)
            try:
                logs = self._fetcher.fetch_logs(self._contract, window, involved_address=wallet)
            except FetchFailed as e:
                logger.warning("Window %s inconclusive for %s: %s", window, wallet, e)
                continue
            if logs:
                latest = max(lg.block_number for lg in logs)
                logger.info("Last interaction of %s at block %d (window %d)", wallet, latest, size)
                return latest
            if window.from_block == 0:
                # window already reaches genesis; larger ones would repeat it
                break
        return None

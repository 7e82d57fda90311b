# discovery/games.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from common.settings import Settings
from decoding.abi import decode_dynamic_string
from decoding.events import GameEvent, decode_log, event_name
from decoding.game_codes import code_variations, is_valid_game_code, normalize_game_code
from discovery.finder import ProgressiveInteractionFinder
from ingestion.endpoints import BlockRange
from ingestion.fetcher import FetchFailed, LogFetcher
from ingestion.parser import LogEntry
from ingestion.rpc import normalize_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameEventRecord:
    log: LogEntry
    event: GameEvent


def code_from_log(log: LogEntry) -> Optional[str]:
    """
    Game code carried by a log: the decoded event's code, or for signatures
    the table does not know, a leading string argument in the data.
    """
    event = decode_log(log)
    if event is not None:
        return event.code
    return normalize_game_code(decode_dynamic_string(log.data))


class GameDiscovery:
    """
    Best effort lookup of a wallet's games.

    Each iteration anchors on the wallet's latest interaction before the
    previous lookback window, then reads the lookback window ending there.
    Bounded by max_iterations, max_lookback_blocks and a wall clock timeout.
    """

    def __init__(
        self,
        fetcher: LogFetcher,
        finder: ProgressiveInteractionFinder,
        contract_address: str,
        lookback_blocks: int = 21_600,
        max_iterations: int = 5,
        max_lookback_blocks: int = 216_000,
        iteration_delay: float = 0.3,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._finder = finder
        self._contract = normalize_address(contract_address)
        self._lookback = lookback_blocks
        self._max_iterations = max_iterations
        self._max_lookback = max_lookback_blocks
        self._delay = iteration_delay
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: LogFetcher, **kwargs) -> "GameDiscovery":
        finder = ProgressiveInteractionFinder(fetcher, settings.contract.address, settings.search.windows)
        opts = dict(
            lookback_blocks=settings.search.lookback_blocks,
            max_iterations=settings.search.max_iterations,
            max_lookback_blocks=settings.search.max_lookback_blocks,
            iteration_delay=settings.search.iteration_delay_seconds,
            timeout=settings.search.timeout_seconds,
        )
        opts.update(kwargs)
        return cls(fetcher, finder, settings.contract.address, **opts)

    def find_games_for_wallet(self, wallet: str, display_limit: int = 3) -> List[str]:
        """Newest first game codes involving `wallet`, at most `display_limit`."""
        wallet = normalize_address(wallet)
        if display_limit <= 0:
            return []
        deadline = self._clock() + self._timeout

        try:
            anchor = self._fetcher.get_block_number()
        except FetchFailed as e:
            logger.warning("Could not read chain head, game search skipped: %s", e)
            return []

        codes: Dict[str, None] = {}
        searched = 0
        iteration = 0
        while (
            iteration < self._max_iterations
            and searched < self._max_lookback
            and len(codes) < display_limit
            and anchor > 0
        ):
            if self._clock() >= deadline:
                logger.info("Game search for %s timed out after %d iterations", wallet, iteration)
                break
            iteration += 1

            last = self._finder.find_last_interaction(wallet, anchor)
            if last is None:
                logger.info("No more interactions of %s before block %d", wallet, anchor)
                break

            window = BlockRange(max(0, last - self._lookback), last)
            try:
                logs = self._fetcher.fetch_logs(self._contract, window, involved_address=wallet)
            except FetchFailed as e:
                logger.warning("Iteration %d: window %s inconclusive: %s", iteration, window, e)
                logs = []

            for lg in sorted(logs, key=lambda x: x.key, reverse=True):
                code = code_from_log(lg)
                if code and code not in codes:
                    codes[code] = None
                    logger.debug("Found %s via %s at block %d", code, event_name(lg.topic0) or "unknown event", lg.block_number)

            searched += window.size
            anchor = window.from_block - 1
            if len(codes) < display_limit and anchor > 0:
                self._sleep(self._delay)

        found = list(codes)[:display_limit]
        logger.info("Game search for %s: %d games after %d iterations", wallet, len(found), iteration)
        return found

    def find_game_events(
        self,
        game_code: str,
        block_range: BlockRange,
        event_topic: Optional[str] = None,
        fuzzy: bool = False,
    ) -> List[GameEventRecord]:
        """
        Decoded events of one game within `block_range`. The code is not an
        indexed parameter, so logs are matched after decoding. With `fuzzy`
        the dash placements of code_variations also match.
        """
        code = normalize_game_code(game_code)
        if code is None:
            raise ValueError(f"invalid game code: {game_code!r}")
        wanted = {code}
        if fuzzy:
            wanted.update(v for v in code_variations(code) if is_valid_game_code(v))
        logs = self._fetcher.fetch_logs(self._contract, block_range, event_topic=event_topic)
        out = []
        for lg in logs:
            event = decode_log(lg)
            if event is not None and event.code in wanted:
                out.append(GameEventRecord(log=lg, event=event))
        return out


__all__ = ["GameDiscovery", "GameEventRecord", "code_from_log"]

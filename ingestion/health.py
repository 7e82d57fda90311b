# ingestion/health.py
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from ingestion.endpoints import BlockRange, Endpoint

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    pass


@dataclass
class EndpointState:
    endpoint: Endpoint
    recent_requests: Deque[float] = field(default_factory=deque)
    consecutive_failures: int = 0
    last_failure_reason: Optional[str] = None
    last_failure_at: Optional[float] = None


class EndpointHealthTracker:
    """
    Owns the per endpoint health and rate window state.

    rules
    one every mutation happens under the tracker lock
    two rate accounting is done at send time by try_acquire, which checks and
      takes a slot in one step
    three an endpoint with failure_threshold consecutive failures is skipped
      until failure_cooldown seconds have passed since its last failure
    """

    def __init__(
        self,
        endpoints: List[Endpoint],
        failure_threshold: int = 3,
        failure_cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not endpoints:
            raise ConfigurationError("at least one RPC endpoint must be configured")
        self._clock = clock
        self._lock = threading.Lock()
        self._failure_threshold = failure_threshold
        self._failure_cooldown = failure_cooldown
        self._states: Dict[str, EndpointState] = {}
        for ep in endpoints:
            if ep.url in self._states:
                raise ConfigurationError(f"duplicate endpoint url: {ep.url}")
            self._states[ep.url] = EndpointState(endpoint=ep)
        self._order = {url: i for i, url in enumerate(self._states)}

    @property
    def endpoints(self) -> List[Endpoint]:
        return [s.endpoint for s in self._states.values()]

    def _state(self, endpoint: Endpoint) -> EndpointState:
        try:
            return self._states[endpoint.url]
        except KeyError:
            raise KeyError(f"unknown endpoint {endpoint.name} ({endpoint.url})") from None

    def _prune(self, st: EndpointState, now: float) -> None:
        horizon = now - st.endpoint.window_seconds
        while st.recent_requests and st.recent_requests[0] <= horizon:
            st.recent_requests.popleft()

    def _short_circuited(self, st: EndpointState, now: float) -> bool:
        return (
            st.consecutive_failures >= self._failure_threshold
            and st.last_failure_at is not None
            and now - st.last_failure_at < self._failure_cooldown
        )

    def _eligible(self, st: EndpointState, now: float) -> bool:
        self._prune(st, now)
        if len(st.recent_requests) >= st.endpoint.requests_per_window:
            return False
        return not self._short_circuited(st, now)

    def is_eligible(self, endpoint: Endpoint) -> bool:
        with self._lock:
            return self._eligible(self._state(endpoint), self._clock())

    def rank_eligible(self, block_range: BlockRange) -> List[Endpoint]:
        """
        Eligible endpoints ordered by fewest consecutive failures, then largest
        capacity, then registry order. Every capacity qualifies for `block_range`
        since ranges are chunked; bigger capacity just means fewer calls.
        """
        with self._lock:
            now = self._clock()
            eligible = [s for s in self._states.values() if self._eligible(s, now)]
            eligible.sort(
                key=lambda s: (
                    s.consecutive_failures,
                    -s.endpoint.max_block_range,
                    self._order[s.endpoint.url],
                )
            )
            return [s.endpoint for s in eligible]

    def seconds_until_available(self, endpoint: Endpoint) -> float:
        """How long until the rate window admits another request (0 when it does now)."""
        with self._lock:
            st = self._state(endpoint)
            now = self._clock()
            self._prune(st, now)
            if len(st.recent_requests) < st.endpoint.requests_per_window:
                return 0.0
            return max(0.0, st.recent_requests[0] + st.endpoint.window_seconds - now)

    def try_acquire(self, endpoint: Endpoint) -> float:
        """
        Take a slot in the rate window and return 0, or return the seconds
        until one frees up without taking anything.
        """
        with self._lock:
            st = self._state(endpoint)
            now = self._clock()
            self._prune(st, now)
            if len(st.recent_requests) < st.endpoint.requests_per_window:
                st.recent_requests.append(now)
                return 0.0
            return max(0.0, st.recent_requests[0] + st.endpoint.window_seconds - now)

    def record_success(self, endpoint: Endpoint) -> None:
        with self._lock:
            st = self._state(endpoint)
            st.consecutive_failures = 0
            st.last_failure_reason = None

    def record_failure(self, endpoint: Endpoint, reason: str) -> None:
        with self._lock:
            st = self._state(endpoint)
            st.consecutive_failures += 1
            st.last_failure_reason = reason
            st.last_failure_at = self._clock()
            failures = st.consecutive_failures
        if failures >= self._failure_threshold:
            logger.warning(
                "Endpoint %s short-circuited after %d consecutive failures: %s",
                endpoint.name, failures, reason,
            )

    def last_failure_reason(self) -> Optional[str]:
        """Reason of the most recent failure on any endpoint."""
        with self._lock:
            failed = [s for s in self._states.values() if s.last_failure_reason and s.last_failure_at is not None]
            if not failed:
                return None
            return max(failed, key=lambda s: s.last_failure_at).last_failure_reason

    def reset(self, endpoint_url: str) -> None:
        """Manual recovery: clear the failure record of one endpoint."""
        with self._lock:
            st = self._states.get(endpoint_url)
            if st is None:
                return
            st.consecutive_failures = 0
            st.last_failure_reason = None
            st.last_failure_at = None

    def snapshot(self, endpoint: Endpoint) -> EndpointState:
        """A detached copy of one endpoint's state, for inspection."""
        with self._lock:
            st = self._state(endpoint)
            return EndpointState(
                endpoint=st.endpoint,
                recent_requests=deque(st.recent_requests),
                consecutive_failures=st.consecutive_failures,
                last_failure_reason=st.last_failure_reason,
                last_failure_at=st.last_failure_at,
            )

    def health_status(self) -> dict:
        with self._lock:
            now = self._clock()
            details = []
            for st in self._states.values():
                self._prune(st, now)
                details.append({
                    "name": st.endpoint.name,
                    "url": st.endpoint.url,
                    "max_block_range": st.endpoint.max_block_range,
                    "healthy": not self._short_circuited(st, now),
                    "consecutive_failures": st.consecutive_failures,
                    "last_error": st.last_failure_reason,
                    "requests_in_window": len(st.recent_requests),
                })
        return {
            "healthy": sum(1 for d in details if d["healthy"]),
            "total": len(details),
            "details": details,
        }


__all__ = ["ConfigurationError", "EndpointState", "EndpointHealthTracker"]

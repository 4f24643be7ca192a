"""Call pacing shared across concurrent job instances.

Every running instance paces itself locally (burst window plus minimum
spacing) and also honours a backoff window published in a shared key/value
record. The record is updated with plain read-modify-write; a lost update
costs at most one extra rate-limit error upstream.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, ValidationError

from pygps51.config import RateLimitPolicy
from pygps51.storage import KeyValueStore

_logger = logging.getLogger(__name__)

Clock = Callable[[], int]
Sleeper = Callable[[float], Awaitable[None]]


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class RateLimitState(BaseModel):
    """Shared pacing record, epoch milliseconds."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    backoff_until: int = 0
    last_call_time: int = 0
    updated_at: datetime | None = None


class RateLimiter:
    """Pace upstream calls and coordinate backoff through *store*.

    ``clock`` returns epoch milliseconds and ``sleep`` takes seconds; both
    are injectable so tests can run on virtual time.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        store: KeyValueStore | None = None,
        *,
        clock: Clock = _now_ms,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._policy = policy
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._backoff_until = 0
        self._last_call_time = 0
        self._window_start = 0
        self._calls_in_window = 0

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    @property
    def backoff_until(self) -> int:
        """Epoch ms until which this instance backs off, 0 when clear."""
        return self._backoff_until

    async def sleep_ms(self, delay_ms: float) -> None:
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

    async def read_shared_state(self) -> RateLimitState:
        """Read the shared record; unreadable or missing means no backoff."""
        if self._store is None:
            return RateLimitState()
        try:
            raw = await self._store.get(self._policy.state_key)
        except Exception as exc:
            _logger.warning("Failed to read shared rate limit state: %s", exc)
            return RateLimitState()
        if not raw:
            return RateLimitState()
        try:
            return RateLimitState.model_validate_json(raw)
        except ValidationError:
            _logger.warning("Ignoring malformed shared rate limit state: %r", raw[:200])
            return RateLimitState()

    async def _write_shared_state(self, *, backoff_until: int | None = None, last_call_time: int | None = None) -> None:
        if self._store is None:
            return
        current = await self.read_shared_state()
        updated = RateLimitState(
            backoff_until=current.backoff_until if backoff_until is None else backoff_until,
            last_call_time=current.last_call_time if last_call_time is None else last_call_time,
            updated_at=datetime.now(UTC),
        )
        try:
            await self._store.set(self._policy.state_key, updated.model_dump_json())
        except Exception as exc:
            _logger.warning("Failed to update shared rate limit state: %s", exc)

    async def backoff_remaining_ms(self) -> int:
        """Milliseconds left in the shared or local backoff window."""
        now = self._clock()
        shared = await self.read_shared_state()
        return max(0, shared.backoff_until - now, self._backoff_until - now)

    async def acquire(self) -> None:
        """Wait until one more call may be made, then record it."""
        remaining = await self.backoff_remaining_ms()
        if remaining > 0:
            _logger.info("In rate limit backoff, waiting %dms", remaining)
            await self.sleep_ms(remaining)
            self._window_start = self._clock()
            self._calls_in_window = 0
        else:
            now = self._clock()
            if now - self._window_start >= self._policy.burst_window_ms:
                self._window_start = now
                self._calls_in_window = 0

            if self._calls_in_window >= self._policy.max_burst_calls:
                wait = self._policy.burst_window_ms - (now - self._window_start)
                if wait > 0:
                    _logger.debug("Burst limit reached, waiting %dms", wait)
                    await self.sleep_ms(wait)
                self._window_start = self._clock()
                self._calls_in_window = 0

            since_last = self._clock() - self._last_call_time
            if since_last < self._policy.min_delay_ms:
                await self.sleep_ms(self._policy.min_delay_ms - since_last)

        self._last_call_time = self._clock()
        self._calls_in_window += 1
        await self._write_shared_state(last_call_time=self._last_call_time)

    async def record_rate_limit(self, attempt: int, code: int | None) -> int:
        """Publish a backoff window after a rate-limit response.

        Returns the delay in milliseconds for zero-based *attempt*.
        """
        delay = self._policy.backoff_delay_ms(attempt)
        self._backoff_until = self._clock() + delay
        await self._write_shared_state(backoff_until=self._backoff_until)
        _logger.warning("Rate limit error %s, backing off for %dms (attempt %d)", code, delay, attempt + 1)
        return delay

    async def record_success(self) -> None:
        """Clear the local and shared backoff windows."""
        self._backoff_until = 0
        await self._write_shared_state(backoff_until=0)

"""
Gateway Rate Limiter.

Per-caller sliding-window admission control with escalating temporary blocks.

Each caller keeps a list of request timestamps inside the trailing window.
When the window is full, the caller is blocked for
`min(window * 2**violation_count, block_cap)` and the violation count grows,
so repeat offenders back off exponentially: window, 2x window, 4x window,
... up to the cap (one hour by default). While a block is active, every call
is rejected immediately and consumes no window budget. When an expired
block is cleared the violation count is kept, so consecutive offences keep
escalating; it resets only once a full block cap has passed since the last
offence.

State lives in a KeyedStore; updates for one caller are serialized by that
caller's lock and never wait on other callers. Idle callers are evicted by
an explicit sweep() from the BotServer cleanup tick.

Named policies (general, command, trading) come from security.yaml.

Usage:
    limiter = GatewayRateLimiter.from_config(get_app_config().security.rate_limiting)

    result = await limiter.check(caller_id, "command")
    if not result.allowed:
        await reply(f"Slow down, retry in {result.retry_after_seconds}s")
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from modules.backend.core.keyed_store import KeyedStore
from modules.backend.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BLOCK_CAP_SECONDS = 3600
DEFAULT_STALE_AFTER_SECONDS = 3600


class RateLimitResult:
    """Result of a rate limit check."""

    def __init__(self, allowed: bool, retry_after_seconds: int = 0) -> None:
        self.allowed = allowed
        self.retry_after_seconds = retry_after_seconds

    def __repr__(self) -> str:
        if self.allowed:
            return "RateLimitResult(allowed)"
        return f"RateLimitResult(blocked, retry_after={self.retry_after_seconds})"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Window size and request budget for one class of traffic."""

    window_seconds: float
    max_requests: int


@dataclass
class RateLimitState:
    """Sliding-window state for a single caller."""

    caller_id: str
    request_timestamps: list[float] = field(default_factory=list)
    is_blocked: bool = False
    blocked_until: float | None = None
    violation_count: int = 0
    last_violation_at: float | None = None
    last_seen: float = 0.0


class GatewayRateLimiter:
    """
    Per-caller sliding-window limiter with exponential block escalation.

    The clock is injectable so tests can drive time explicitly; it must be
    monotonic in production.
    """

    def __init__(
        self,
        policies: dict[str, RateLimitPolicy] | None = None,
        block_cap_seconds: float = DEFAULT_BLOCK_CAP_SECONDS,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policies = policies or {"general": RateLimitPolicy(60, 30)}
        self._block_cap = block_cap_seconds
        self._stale_after = stale_after_seconds
        self._clock = clock
        self._states: KeyedStore[str, RateLimitState] = KeyedStore("rate_limits")
        self._total_violations = 0

    @classmethod
    def from_config(cls, rate_limiting: Any, clock: Callable[[], float] = time.monotonic) -> "GatewayRateLimiter":
        """Build a limiter from the security.yaml rate_limiting section."""
        policies = {
            name: RateLimitPolicy(p.window_seconds, p.max_requests)
            for name, p in rate_limiting.policies.items()
        }
        return cls(
            policies=policies,
            block_cap_seconds=rate_limiting.block_cap_seconds,
            stale_after_seconds=rate_limiting.stale_after_seconds,
            clock=clock,
        )

    def policy(self, name: str) -> RateLimitPolicy:
        """Return a named policy, falling back to 'general'."""
        return self._policies.get(name) or self._policies["general"]

    async def check(self, caller_id: str | int, policy: str = "general") -> RateLimitResult:
        """Admit or reject a request under a named policy."""
        selected = self.policy(policy)
        key = f"{policy}:{caller_id}"
        return await self.allow(key, selected.window_seconds, selected.max_requests)

    async def allow(
        self,
        caller_id: str | int,
        window: float,
        max_requests: int,
    ) -> RateLimitResult:
        """
        Admit or reject one request for `caller_id`.

        Args:
            caller_id: Key of the caller (optionally namespaced by policy)
            window: Sliding window length in seconds
            max_requests: Requests admitted per window

        Returns:
            RateLimitResult; never raises
        """
        key = str(caller_id)
        async with self._states.locked(key):
            now = self._clock()
            state = self._states.get(key)
            if state is None:
                state = RateLimitState(caller_id=key)
                self._states.set(key, state)
            state.last_seen = now

            if state.is_blocked and state.blocked_until is not None:
                if now < state.blocked_until:
                    return RateLimitResult(
                        allowed=False,
                        retry_after_seconds=_ceil_seconds(state.blocked_until - now),
                    )
                state.is_blocked = False
                state.blocked_until = None

            if (
                state.last_violation_at is not None
                and now - state.last_violation_at >= self._block_cap
            ):
                state.violation_count = 0
                state.last_violation_at = None

            cutoff = now - window
            state.request_timestamps = [ts for ts in state.request_timestamps if ts > cutoff]

            if len(state.request_timestamps) >= max_requests:
                duration = self.block_duration(window, state.violation_count)
                state.is_blocked = True
                state.blocked_until = now + duration
                state.violation_count += 1
                state.last_violation_at = now
                state.request_timestamps.clear()
                self._total_violations += 1

                logger.warning(
                    "Rate limit exceeded",
                    extra={
                        "caller_id": key,
                        "limit": max_requests,
                        "window_seconds": window,
                        "violation_count": state.violation_count,
                        "block_seconds": duration,
                    },
                )
                return RateLimitResult(allowed=False, retry_after_seconds=_ceil_seconds(duration))

            state.request_timestamps.append(now)
            return RateLimitResult(allowed=True)

    def block_duration(self, window: float, prior_violations: int) -> float:
        """Block length for a caller with `prior_violations` earlier offences."""
        # Exponent is clamped so huge counts cannot overflow the float
        return min(window * (2 ** min(prior_violations, 32)), self._block_cap)

    async def block(self, caller_id: str | int, seconds: float, policy: str = "general") -> None:
        """Manually block a caller, e.g. after abuse reported by an operator."""
        key = f"{policy}:{caller_id}"
        async with self._states.locked(key):
            now = self._clock()
            state = self._states.get(key) or RateLimitState(caller_id=key)
            state.is_blocked = True
            state.blocked_until = now + seconds
            state.last_seen = now
            self._states.set(key, state)
        logger.info("Caller blocked manually", extra={"caller_id": key, "seconds": seconds})

    async def unblock(self, caller_id: str | int, policy: str = "general") -> bool:
        """Lift a block and forget violations. Returns False if the caller was not tracked."""
        key = f"{policy}:{caller_id}"
        async with self._states.locked(key):
            state = self._states.get(key)
            if state is None:
                return False
            state.is_blocked = False
            state.blocked_until = None
            state.violation_count = 0
            state.request_timestamps.clear()
        logger.info("Caller unblocked", extra={"caller_id": key})
        return True

    async def sweep(self) -> int:
        """Evict callers idle beyond the stale threshold whose block has ended."""
        now = self._clock()

        def is_stale(_key: str, state: RateLimitState) -> bool:
            if state.is_blocked and state.blocked_until is not None and state.blocked_until > now:
                return False
            return now - state.last_seen > self._stale_after

        return await self._states.sweep(is_stale)

    def stats(self) -> dict[str, int]:
        """Counters for the health/metrics endpoint."""
        now = self._clock()
        blocked = sum(
            1
            for _, state in self._states.items()
            if state.is_blocked and state.blocked_until is not None and state.blocked_until > now
        )
        return {
            "tracked_callers": len(self._states),
            "blocked_callers": blocked,
            "total_violations": self._total_violations,
        }


def _ceil_seconds(value: float) -> int:
    return max(1, math.ceil(value))

"""
"First success wins" combinator for tiered fallbacks.

Each tier is a named ``async (input) -> result`` callable.  Tiers are tried in
order; the first one that returns without raising supplies the result, and
the failures before it are kept so callers can log which tier was used.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from valuation.errors import AllStrategiesFailed, Attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Strategy(Generic[T]):
    name: str
    run: Callable[[Any], Awaitable[T]]


@dataclass
class Outcome(Generic[T]):
    value: T
    tier: str
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.attempts)


async def first_success(strategies: Sequence[Strategy[T]], arg: Any, label: str = "") -> Outcome[T]:
    """Run *strategies* in order against *arg*; raise AllStrategiesFailed if none succeed."""
    attempts: list[Attempt] = []
    for strategy in strategies:
        try:
            value = await strategy.run(arg)
        except Exception as e:
            logger.warning("%s tier '%s' failed: %s", label or "fallback", strategy.name, e)
            attempts.append(Attempt(tier=strategy.name, error=str(e) or type(e).__name__))
            continue
        if attempts:
            logger.info("%s succeeded on tier '%s' after %d failure(s)", label or "fallback", strategy.name, len(attempts))
        return Outcome(value=value, tier=strategy.name, attempts=attempts)
    raise AllStrategiesFailed(attempts)

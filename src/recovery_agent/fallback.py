"""Fallback-chain executor and the metrics collector behind it.

Every data-retrieval tool has several ways to get an answer — a curated
local knowledge base, a public API, a generic safe default — and any of
the upstream sources can be slow or down. ``execute_with_fallback`` tries
the strategies in order and returns the first real value, tagged with the
name of the strategy that produced it:

    result = await execute_with_fallback(
        "lookup_medication_instructions",
        [KnowledgeBaseLookup(name), OpenFDALabelLookup(client, name)],
        GENERIC_MEDICATION_ADVICE,
        metrics=metrics,
    )
    result.source  # "KNOWLEDGE_BASE", "OPENFDA_LABEL" or "FALLBACK"

A strategy that raises is treated exactly like one that found nothing,
and when every strategy comes up empty the caller's terminal fallback is
returned tagged "FALLBACK". The function never raises; task cancellation
still propagates.

Each completed chain is recorded in a ``FallbackMetricsCollector``: a
bounded FIFO buffer that answers "which source is actually serving
lookup_medication_instructions, and how fast?" without instrumenting
every call site.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from recovery_agent.config import FALLBACK_METRICS_CAPACITY

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "FALLBACK"


class FallbackStrategy(ABC):
    """One way of retrieving a value.

    Subclasses take whatever they need (a client, a lookup key) in their
    constructor and implement ``execute``, returning the value or None when
    they have nothing to offer.
    """

    name: str = "STRATEGY"

    @abstractmethod
    async def execute(self) -> Any | None:
        """Attempt the retrieval. Return None (or raise) if unavailable."""


@dataclass(frozen=True)
class StrategyAttempt:
    """One strategy's try within a chain."""

    strategy: str
    outcome: str  # "success" | "empty" | "error" | "timeout"
    duration_ms: float
    error: str | None = None


@dataclass(frozen=True)
class TaggedResult:
    """Outcome of a fallback chain: the value and where it came from."""

    tool_name: str
    value: Any
    source: str
    attempts: tuple[StrategyAttempt, ...] = ()

    @property
    def used_fallback(self) -> bool:
        return self.source == FALLBACK_SOURCE

    def to_observation(self) -> dict[str, Any]:
        """The value with its source attached, ready to show the model."""
        if isinstance(self.value, dict):
            return {**self.value, "source": self.source}
        return {"result": self.value, "source": self.source}


@dataclass(frozen=True)
class FallbackOutcome:
    """Record of one completed fallback chain."""

    tool_name: str
    strategy_used: str
    duration_ms: float
    timestamp: float = field(default_factory=time.time)


class FallbackMetricsCollector:
    """Bounded, thread-safe buffer of fallback outcomes.

    Holds at most ``capacity`` entries; appending to a full buffer evicts
    the oldest. One instance is owned by the application and handed to the
    tools that need it, so tests can create their own and inspect it.
    """

    def __init__(self, capacity: int = FALLBACK_METRICS_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._outcomes: deque[FallbackOutcome] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._outcomes)

    def record(self, tool_name: str, strategy_used: str, duration_ms: float) -> None:
        outcome = FallbackOutcome(tool_name, strategy_used, duration_ms)
        with self._lock:
            self._outcomes.append(outcome)

    def outcomes(self) -> list[FallbackOutcome]:
        """Snapshot of the buffer, oldest first."""
        with self._lock:
            return list(self._outcomes)

    def clear(self) -> None:
        with self._lock:
            self._outcomes.clear()

    def get_fallback_metrics(self, tool_name: str | None = None) -> dict[str, Any]:
        """Aggregate outcomes, optionally for a single tool.

        Returns:
            {"total": int,
             "by_strategy": {strategy: count},
             "avg_duration_by_strategy": {strategy: ms}}
        """
        relevant = [
            o for o in self.outcomes() if tool_name is None or o.tool_name == tool_name
        ]

        counts: dict[str, int] = defaultdict(int)
        durations: dict[str, float] = defaultdict(float)
        for outcome in relevant:
            counts[outcome.strategy_used] += 1
            durations[outcome.strategy_used] += outcome.duration_ms

        return {
            "total": len(relevant),
            "by_strategy": dict(counts),
            "avg_duration_by_strategy": {
                strategy: durations[strategy] / count for strategy, count in counts.items()
            },
        }

    def log_summary(self) -> None:
        """Log per-tool strategy shares and average latencies."""
        tool_names = sorted({o.tool_name for o in self.outcomes()})
        logger.info("Fallback metrics: %d chains across %d tools", len(self), len(tool_names))
        for name in tool_names:
            stats = self.get_fallback_metrics(name)
            for strategy, count in stats["by_strategy"].items():
                logger.info(
                    "  %s / %s: %d (%.1f%%) avg %.0fms",
                    name,
                    strategy,
                    count,
                    count / stats["total"] * 100,
                    stats["avg_duration_by_strategy"][strategy],
                )


async def execute_with_fallback(
    tool_name: str,
    strategies: Sequence[FallbackStrategy],
    terminal_fallback: Any,
    *,
    metrics: FallbackMetricsCollector | None = None,
    strategy_timeout: float | None = None,
) -> TaggedResult:
    """Try ``strategies`` in order; return the first non-None value.

    Args:
        tool_name: Tool the chain belongs to (used for metrics and logs).
        strategies: Strategies to try, in priority order.
        terminal_fallback: Value returned, tagged "FALLBACK", if every
            strategy fails or returns None.
        metrics: Collector that receives one outcome for the chain.
        strategy_timeout: Optional per-strategy limit in seconds; a strategy
            that exceeds it counts as failed.

    Returns:
        A TaggedResult whose ``attempts`` lists every strategy tried.
    """
    chain_start = time.perf_counter()
    attempts: list[StrategyAttempt] = []

    for strategy in strategies:
        start = time.perf_counter()
        logger.debug("[%s] Trying %s", tool_name, strategy.name)
        try:
            async with asyncio.timeout(strategy_timeout):
                value = await strategy.execute()
        except TimeoutError:
            duration_ms = (time.perf_counter() - start) * 1000
            attempts.append(StrategyAttempt(strategy.name, "timeout", duration_ms))
            logger.warning(
                "[%s] %s timed out after %.0fms", tool_name, strategy.name, duration_ms
            )
            continue
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            attempts.append(StrategyAttempt(strategy.name, "error", duration_ms, str(exc)))
            logger.warning(
                "[%s] %s failed (%.0fms): %s", tool_name, strategy.name, duration_ms, exc
            )
            continue

        duration_ms = (time.perf_counter() - start) * 1000
        if value is None:
            attempts.append(StrategyAttempt(strategy.name, "empty", duration_ms))
            logger.debug("[%s] %s returned nothing, trying next", tool_name, strategy.name)
            continue

        attempts.append(StrategyAttempt(strategy.name, "success", duration_ms))
        if metrics is not None:
            metrics.record(tool_name, strategy.name, duration_ms)
        logger.info("[%s] Success with %s (%.0fms)", tool_name, strategy.name, duration_ms)
        return TaggedResult(tool_name, value, strategy.name, tuple(attempts))

    # The fallback itself is instant; record how long the failed chain took
    chain_ms = (time.perf_counter() - chain_start) * 1000
    if metrics is not None:
        metrics.record(tool_name, FALLBACK_SOURCE, chain_ms)
    logger.info("[%s] All strategies failed, using terminal fallback", tool_name)
    return TaggedResult(tool_name, terminal_fallback, FALLBACK_SOURCE, tuple(attempts))

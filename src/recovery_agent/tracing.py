"""Observability sink for agent runs.

The controller opens one trace per run and one span per iteration and per
tool call, updating each with its output before ending it. Any backend
that offers begin/update/end can plug in through the ``Tracer`` protocol;
nothing in the agent depends on one being present.

- NoopTracer:    default; discards everything
- LoggingTracer: writes trace and span lifecycles to the standard logger
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Span(Protocol):
    def update(
        self,
        output: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def end(self) -> None: ...


class Trace(Span, Protocol):
    def span(self, name: str, metadata: dict[str, Any] | None = None) -> Span: ...


class Tracer(Protocol):
    def trace(self, name: str, metadata: dict[str, Any] | None = None) -> Trace: ...


class _NoopSpan:
    def span(self, name: str, metadata: dict[str, Any] | None = None) -> _NoopSpan:
        return self

    def update(
        self,
        output: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        pass

    def end(self) -> None:
        pass


class NoopTracer:
    """Tracer used when no observability backend is configured."""

    def trace(self, name: str, metadata: dict[str, Any] | None = None) -> Trace:
        return _NoopSpan()


class _LoggedSpan:
    def __init__(self, name: str, metadata: dict[str, Any] | None, parent: str = "") -> None:
        self.name = f"{parent}/{name}" if parent else name
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.output: dict[str, Any] = {}
        self._start = time.perf_counter()
        self._ended = False
        logger.debug("span start %s %s", self.name, self.metadata)

    def span(self, name: str, metadata: dict[str, Any] | None = None) -> _LoggedSpan:
        return _LoggedSpan(name, metadata, parent=self.name)

    def update(
        self,
        output: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.output.update(output or {})
        self.metadata.update(metadata or {})

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        elapsed_ms = (time.perf_counter() - self._start) * 1000
        logger.info("span end %s (%.0fms) metadata=%s", self.name, elapsed_ms, self.metadata)


class LoggingTracer:
    """Tracer that reports every trace and span through ``logging``."""

    def trace(self, name: str, metadata: dict[str, Any] | None = None) -> Trace:
        return _LoggedSpan(name, metadata)

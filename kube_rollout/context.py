"""Utilities for context tracing.

A trace span covers one stage of the pipeline. Spans nest through a context
variable so the log output shows the full path of the current operation, and
finished spans are reported to the active `TraceCollector`.
"""

from collections import defaultdict
import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Span",
    "TraceCollector",
    "trace_context",
    "get_trace_collector",
]


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")
_collector: contextvars.ContextVar["TraceCollector | None"] = contextvars.ContextVar(
    "trace_collector", default=None
)


@dataclass
class Span:
    """A single traced operation."""

    name: str
    attributes: dict[str, str] = field(default_factory=dict)
    error: BaseException | None = None
    duration: float | None = None

    def set_attribute(self, key: str, value: str) -> None:
        self.attributes[key] = value

    def record_error(self, err: BaseException) -> None:
        """Annotate the span with the error that ended it."""
        self.error = err


class TraceCollector:
    """Accumulates timings of finished spans."""

    def __init__(self) -> None:
        self.timings: dict[str, float] = defaultdict(float)
        self.counts: dict[str, int] = defaultdict(int)
        self.spans: list[Span] = []

    def add(self, name: str, duration: float) -> None:
        self.timings[name] += duration
        self.counts[name] += 1

    def finish(self, span: Span) -> None:
        """Record a finished span."""
        self.spans.append(span)
        self.add(span.name, span.duration or 0.0)


@contextmanager
def get_trace_collector() -> Generator[TraceCollector, None, None]:
    """Collect all spans finished while the context is active."""
    collector = TraceCollector()
    token = _collector.set(collector)
    try:
        yield collector
    finally:
        _collector.reset(token)


def _report(span: Span) -> None:
    if (collector := _collector.get()) is None:
        return
    try:
        collector.finish(span)
    except Exception as err:  # pylint: disable=broad-except
        _LOGGER.warning("Unable to record trace span %s: %s", span.name, err)


@contextmanager
def trace_context(name: str) -> Generator[Span, None, None]:
    """Run the block inside a trace span.

    An exception escaping the block is recorded on the span before it is
    re-raised. The span is finished exactly once.
    """
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    span = Span(name=name)
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield span
    except BaseException as err:
        if span.error is None:
            span.record_error(err)
        raise
    finally:
        span.duration = perf_counter() - t1
        trace.reset(token)
        if span.error is not None:
            _LOGGER.debug(
                "[Trace] < %s (%0.2fs) error: %s", label, span.duration, span.error
            )
        else:
            _LOGGER.debug("[Trace] < %s (%0.2fs)", label, span.duration)
        _report(span)

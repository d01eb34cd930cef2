"""Shared fixtures for kube-rollout tests."""

from collections.abc import Generator

import pytest

from kube_rollout import context


@pytest.fixture(autouse=True)
def trace_collector() -> Generator[context.TraceCollector, None, None]:
    """Capture the trace spans finished by each test."""
    with context.get_trace_collector() as collector:
        yield collector

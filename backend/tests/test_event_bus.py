"""
backend/tests/test_event_bus.py

Purpose:
    Unit tests for the in-memory event bus implementation.
"""

from __future__ import annotations

import asyncio

import pytest

from app.services.event_bus import InMemoryEventBus
from app.services.event_models import ResultDeclaredEvent


def _event(correlation_id: str) -> ResultDeclaredEvent:
    return ResultDeclaredEvent(
        source="test",
        correlation_id=correlation_id,
        draw_id="draw-1",
        market_id="kalyan",
        winning_number="45",
        method="manual",
    )


@pytest.mark.asyncio
async def test_event_bus_fanout_and_correlation() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    seen: list[tuple[str, str]] = []

    async def handler_a(event):
        seen.append(("a", event.correlation_id))

    async def handler_b(event):
        seen.append(("b", event.correlation_id))

    bus.subscribe("result.declared", handler_a, handler_name="a", concurrency=1)
    bus.subscribe("result.declared", handler_b, handler_name="b", concurrency=1)
    await bus.start()

    bus.publish(_event("corr-1"))
    await asyncio.sleep(0.05)
    await bus.stop()

    assert ("a", "corr-1") in seen
    assert ("b", "corr-1") in seen
    stats = bus.stats()
    assert stats["published_total"] == 1
    assert stats["failed_total"] == 0
    assert stats["per_handler"]["result.declared:a"]["handled_total"] == 1


@pytest.mark.asyncio
async def test_event_bus_handler_failure_isolated() -> None:
    bus = InMemoryEventBus(ingress_maxsize=10, handler_maxsize=10, default_concurrency=1, error_buffer_size=10)
    success_calls = 0

    async def failing(_event):
        raise RuntimeError("boom")

    async def success(_event):
        nonlocal success_calls
        success_calls += 1

    bus.subscribe("result.declared", failing, handler_name="failing", concurrency=1)
    bus.subscribe("result.declared", success, handler_name="success", concurrency=1)
    await bus.start()
    bus.publish(_event("corr-2"))
    await asyncio.sleep(0.05)
    await bus.stop()

    stats = bus.stats()
    assert success_calls == 1
    assert stats["failed_total"] >= 1
    assert stats["recent_errors"][0]["handler_name"] == "failing"


@pytest.mark.asyncio
async def test_event_bus_overflow_drops() -> None:
    bus = InMemoryEventBus(ingress_maxsize=1, handler_maxsize=1, default_concurrency=1, error_buffer_size=10)
    event = _event("corr-3")
    bus.publish(event)
    bus.publish(event.model_copy(update={"event_id": "evt-2"}))

    stats = bus.stats()
    assert stats["published_total"] == 1
    assert stats["dropped_total"] == 1

"""
backend/app/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - app.services.event_bus
    - app.services.event_handlers.draw_handlers
"""

from __future__ import annotations

from app.config import settings
from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers.draw_handlers import handle_draw_settled, handle_result_declared


def register_event_handlers(bus: InMemoryEventBus) -> None:
    if settings.EVENT_HANDLER_RESULT_DECLARED_ENABLED:
        bus.subscribe("result.declared", handle_result_declared, handler_name="result_declared", concurrency=1)
    if settings.EVENT_HANDLER_DRAW_SETTLED_ENABLED:
        bus.subscribe("draw.settled", handle_draw_settled, handler_name="draw_settled", concurrency=1)

"""In-process notification of finished calls.

Owners of derived data (for example the agent performance cache) subscribe
here; publishing never blocks the webhook pipeline.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, List, Set, Union

from app.services.collaborators import CallCompletedEvent
from app.utils.logging import get_logger

logger = get_logger("services.call_events")

Listener = Callable[[CallCompletedEvent], Union[None, Awaitable[None]]]


class CallEventBus:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: CallCompletedEvent) -> None:
        for listener in list(self._listeners):
            task = asyncio.create_task(self._deliver(listener, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, listener: Listener, event: CallCompletedEvent) -> None:
        try:
            result = listener(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "call_event_listener_failed",
                call_id=event.call_id,
                listener=getattr(listener, "__name__", repr(listener)),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


call_event_bus = CallEventBus()

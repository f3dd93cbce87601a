from __future__ import annotations

import asyncio
from typing import AsyncIterator, List

from assembler.app.events.emitter import AssemblyEventEmitter
from assembler.app.events.models import TERMINAL_EVENTS, AssemblyEvent


class MemoryQueueEventEmitter(AssemblyEventEmitter):
    """
    In-memory async event emitter.

    Single consumer, ordered. The stream ends after the first terminal
    event (completed or failed). Every emitted event is also kept in
    ``history`` for inspection after the fact.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[AssemblyEvent | None] = asyncio.Queue()
        self._closed = False
        self.history: List[AssemblyEvent] = []

    async def emit(self, event: AssemblyEvent) -> None:
        if self._closed:
            return

        self.history.append(event)
        await self._queue.put(event)

        if event.event_type in TERMINAL_EVENTS:
            await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(None)

    async def stream(self) -> AsyncIterator[AssemblyEvent]:
        """
        Async generator yielding emitted events in order.
        """
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event

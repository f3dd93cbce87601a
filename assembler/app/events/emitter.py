from __future__ import annotations

from typing import Protocol

from assembler.app.events.models import AssemblyEvent


class AssemblyEventEmitter(Protocol):
    """
    Interface for broadcasting assembly observations.

    Emission must never fail or noticeably delay an assembly.
    """

    async def emit(self, event: AssemblyEvent) -> None:
        ...


class NullEventEmitter:
    """
    A safe no-op emitter, used when nobody listens.
    """

    async def emit(self, event: AssemblyEvent) -> None:
        return

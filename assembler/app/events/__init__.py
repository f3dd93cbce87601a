from .models import AssemblyEvent, AssemblyEventType
from .emitter import AssemblyEventEmitter, NullEventEmitter
from .memory_emitter import MemoryQueueEventEmitter

__all__ = [
    "AssemblyEvent",
    "AssemblyEventType",
    "AssemblyEventEmitter",
    "NullEventEmitter",
    "MemoryQueueEventEmitter",
]

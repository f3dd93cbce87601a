from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


# ----------------------------------------------------------------------
# Event Types
# ----------------------------------------------------------------------
class AssemblyEventType(str, Enum):
    """
    Progression events emitted while one document is assembled.

    NOTE:
    Events are observational. Nothing in the pipeline reads them back.
    """

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    ASSEMBLY_STARTED = "assembly_started"
    ASSEMBLY_COMPLETED = "assembly_completed"
    ASSEMBLY_FAILED = "assembly_failed"

    # ------------------------------------------------------------------
    # Template resolution
    # ------------------------------------------------------------------
    TEMPLATE_RESOLVED = "template_resolved"
    TEMPLATE_FALLBACK = "template_fallback"

    # ------------------------------------------------------------------
    # Images & rendering
    # ------------------------------------------------------------------
    IMAGES_PRELOADED = "images_preloaded"
    IMAGE_DEFAULTED = "image_defaulted"
    RENDER_COMPLETED = "render_completed"


TERMINAL_EVENTS = frozenset(
    {
        AssemblyEventType.ASSEMBLY_COMPLETED,
        AssemblyEventType.ASSEMBLY_FAILED,
    }
)


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class AssemblyEvent(BaseModel):
    """
    An immutable observation of a stage transition during assembly.
    """

    event_id: UUID = Field(default_factory=uuid4)
    assembly_id: str = Field(..., description="Identifier of one assembly run")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: AssemblyEventType

    # Optional contextual metadata (template names, counts, tags)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

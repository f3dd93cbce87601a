"""
Error taxonomy for the document assembly engine.

Only two errors cross the engine boundary:

- NoTemplateAvailable   the whole fallback chain was exhausted
- RenderBindingError    the template package is structurally broken

Everything else (missing templates, undecodable images) is absorbed
locally with a degraded-but-valid fallback and surfaces only in logs.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Sequence


class AssemblyStage(str, Enum):
    """
    Stage of the assembly pipeline that produced a failure.
    """

    RESOLVE = "resolve"
    BIND = "bind"
    PRELOAD = "preload"
    RENDER = "render"


class AssemblyError(Exception):
    """Base class for fatal assembly failures."""

    stage: AssemblyStage


# ---------------------------------------------------------------------------
# Locally recovered
# ---------------------------------------------------------------------------


class TemplateNotFound(Exception):
    """Raised by the TemplateStore when a named template cannot be loaded."""

    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        self.reason = reason
        message = f"Template '{name}' not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ImageDecodeFailure(Exception):
    """Raised when an image section's raster data cannot be measured."""

    def __init__(self, tag: str, reason: str = "") -> None:
        self.tag = tag
        self.reason = reason
        super().__init__(f"Could not decode image for section '{tag}': {reason}")


# ---------------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------------


class NoTemplateAvailable(AssemblyError):
    """Raised when no candidate of the fallback chain could be loaded."""

    stage = AssemblyStage.RESOLVE

    def __init__(self, tried: Sequence[str]) -> None:
        self.tried: List[str] = list(tried)
        super().__init__(
            "No template available; tried: " + ", ".join(self.tried)
        )


class RenderBindingError(AssemblyError):
    """
    Aggregated structural failure of one render pass.

    Every problem found during the pass is collected so a single report
    covers all of them.
    """

    stage = AssemblyStage.RENDER

    def __init__(self, messages: Sequence[str]) -> None:
        self.messages: List[str] = list(messages)
        super().__init__(
            f"Template rendering failed with {len(self.messages)} error(s):\n"
            + "\n".join(f"- {m}" for m in self.messages)
        )

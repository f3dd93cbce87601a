"""
Delivery of assembled documents.

The orchestrator hands finished bytes to a DocumentSink. WorkspaceSink
writes into a single directory and refuses any filename whose resolved
path would land outside it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class DocumentSink(Protocol):
    """Accepts finished document bytes and returns where they were stored."""

    def save(self, data: bytes, filename: str) -> Path:
        ...


class WorkspaceSink:
    """
    Writes documents into ``directory``, creating it on first use.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser().resolve()

    def safe_path(self, filename: str) -> Path:
        """
        Resolve ``filename`` inside the workspace.

        Raises ValueError if the resolved path escapes the workspace.
        """
        if not filename or filename.strip() in {".", ".."}:
            raise ValueError(f"Invalid document filename: {filename!r}")

        candidate = (self.directory / filename).resolve()

        # Containment check: resolved path must remain inside the workspace.
        try:
            candidate.relative_to(self.directory)
        except ValueError:
            raise ValueError(
                f"Document path escapes workspace {self.directory}: {candidate}"
            ) from None

        if candidate == self.directory:
            raise ValueError(f"Invalid document filename: {filename!r}")

        return candidate

    def save(self, data: bytes, filename: str) -> Path:
        path = self.safe_path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Saved document %s (%d bytes)", path, len(data))
        return path

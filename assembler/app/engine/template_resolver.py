"""
Template fallback chain.

Resolution order:
    1. the requested template
    2. the configured default template (when different from the request)
    3. the configured last-resort template

The chain is finite and never tries a name twice. Substitutions are
silent to the caller and logged at WARNING for operators.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from assembler.app.engine.errors import NoTemplateAvailable, TemplateNotFound
from assembler.app.engine.template_store import TemplateResource, TemplateStore

logger = logging.getLogger(__name__)


class TemplateResolver:
    def __init__(
        self,
        store: TemplateStore,
        *,
        default_name: str,
        fallback_name: Optional[str] = None,
    ) -> None:
        self._store = store
        self.default_name = default_name
        self.fallback_name = fallback_name

    def candidates(self, requested_name: Optional[str]) -> List[str]:
        """Ordered, de-duplicated names the chain will try."""
        ordered = [requested_name or self.default_name, self.default_name]
        if self.fallback_name:
            ordered.append(self.fallback_name)

        seen: List[str] = []
        for name in ordered:
            if name not in seen:
                seen.append(name)
        return seen

    def resolve(self, requested_name: Optional[str]) -> bytes:
        return self.resolve_resource(requested_name).data

    def resolve_resource(self, requested_name: Optional[str]) -> TemplateResource:
        """
        Return the first loadable template of the chain.

        Raises NoTemplateAvailable when every candidate fails.
        """
        tried: List[str] = []

        for name in self.candidates(requested_name):
            if tried:
                logger.warning(
                    "Template '%s' unavailable, falling back to '%s'",
                    tried[-1],
                    name,
                )
            try:
                return self._store.load_resource(name)
            except TemplateNotFound as exc:
                logger.info("Template lookup failed: %s", exc)
                tried.append(name)

        logger.error("No template available; tried %s", tried)
        raise NoTemplateAvailable(tried)

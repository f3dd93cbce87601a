"""
Assembly orchestrator.

Execution order, once per call and without retries:
    1. resolve the template through the fallback chain
    2. bind the record into a tag map
    3. pre-resolve image sizes (concurrent, awaited)
    4. render synchronously using the resolved sizes

Only NoTemplateAvailable and RenderBindingError leave this module.
Events are observational: emission never influences control flow.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from assembler.app.config import Settings
from assembler.app.engine.binder import PlaceholderBinder
from assembler.app.engine.errors import AssemblyError
from assembler.app.engine.images import ImageAssetPipeline
from assembler.app.engine.renderer import DocumentRenderer
from assembler.app.engine.sink import DocumentSink, WorkspaceSink
from assembler.app.engine.tags import derive_tag
from assembler.app.engine.template_resolver import TemplateResolver
from assembler.app.engine.template_store import TemplateStore
from assembler.app.events import (
    AssemblyEvent,
    AssemblyEventEmitter,
    AssemblyEventType,
    NullEventEmitter,
)
from assembler.app.schemas.document import DocumentDataModel

logger = logging.getLogger(__name__)


def default_filename(
    document_type: str,
    customer_name: Optional[str],
    *,
    on: Optional[date] = None,
    extension: str = "docx",
) -> str:
    """``<DocType>_<SanitizedCustomerName>_<ISODate>.<ext>``"""
    customer = derive_tag(customer_name or "") or "Customer"
    day = (on or date.today()).isoformat()
    return f"{document_type}_{customer}_{day}.{extension.lstrip('.')}"


class AssembledDocument(BaseModel):
    """A rendered document and the template it was rendered from."""

    data: bytes
    template_name: str
    filename: str

    model_config = ConfigDict(frozen=True)


class AssemblyOrchestrator:
    def __init__(
        self,
        resolver: TemplateResolver,
        *,
        binder: Optional[PlaceholderBinder] = None,
        pipeline: Optional[ImageAssetPipeline] = None,
        renderer: Optional[DocumentRenderer] = None,
        emitter: Optional[AssemblyEventEmitter] = None,
        document_type: str = "SOW",
        extension: str = "docx",
        sink: Optional[DocumentSink] = None,
    ) -> None:
        """
        Direct constructor, intended for tests and explicit wiring.
        """
        self.resolver = resolver
        self.binder = binder or PlaceholderBinder()
        self.pipeline = pipeline or ImageAssetPipeline()
        self.renderer = renderer or DocumentRenderer()
        self.emitter = emitter or NullEventEmitter()
        self.document_type = document_type
        self.extension = extension
        self.sink = sink

    # ------------------------------------------------------------------
    # Integration constructor (composition root)
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: Optional[TemplateStore] = None,
        emitter: Optional[AssemblyEventEmitter] = None,
    ) -> "AssemblyOrchestrator":
        store = store or TemplateStore(
            settings.template_root,
            timeout_seconds=settings.template_fetch_timeout_seconds,
        )
        resolver = TemplateResolver(
            store,
            default_name=settings.default_template_name,
            fallback_name=settings.fallback_template_name,
        )
        pipeline = ImageAssetPipeline(
            max_box=settings.max_image_box,
            fallback_size=settings.fallback_image_size,
            decode_timeout_seconds=settings.image_decode_timeout_seconds,
        )
        return cls(
            resolver,
            pipeline=pipeline,
            emitter=emitter,
            document_type=settings.document_type,
            extension=settings.output_extension,
            sink=WorkspaceSink(settings.workspace_dir),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def assemble(
        self,
        record: DocumentDataModel,
        requested_template_name: Optional[str] = None,
        *,
        emitter: Optional[AssemblyEventEmitter] = None,
    ) -> bytes:
        """
        Produce the finished document bytes for ``record``.

        Raises NoTemplateAvailable or RenderBindingError.
        """
        document = await self.assemble_document(
            record, requested_template_name, emitter=emitter
        )
        return document.data

    async def assemble_document(
        self,
        record: DocumentDataModel,
        requested_template_name: Optional[str] = None,
        *,
        emitter: Optional[AssemblyEventEmitter] = None,
        assembly_id: Optional[str] = None,
    ) -> AssembledDocument:
        emitter = emitter or self.emitter
        assembly_id = assembly_id or uuid4().hex
        requested = requested_template_name or record.template_file_name or None

        async def emit(event_type: AssemblyEventType, **details: Any) -> None:
            await self._emit(emitter, assembly_id, event_type, details or None)

        await emit(AssemblyEventType.ASSEMBLY_STARTED, requested_template=requested)

        try:
            # ----------------------------------------------------------
            # 1. Template resolution
            # ----------------------------------------------------------
            first_choice = self.resolver.candidates(requested)[0]
            template = await asyncio.to_thread(
                self.resolver.resolve_resource, requested
            )
            if template.name != first_choice:
                await emit(
                    AssemblyEventType.TEMPLATE_FALLBACK,
                    requested_template=first_choice,
                    template=template.name,
                )
            await emit(AssemblyEventType.TEMPLATE_RESOLVED, template=template.name)

            # ----------------------------------------------------------
            # 2. Binding
            # ----------------------------------------------------------
            tag_map = self.binder.bind(record)

            # ----------------------------------------------------------
            # 3. Image pre-resolution
            # ----------------------------------------------------------
            image_sizes = await self.pipeline.preload(tag_map, record.content_sections)
            await emit(
                AssemblyEventType.IMAGES_PRELOADED,
                images=len(image_sizes),
                defaulted=len(image_sizes.defaulted),
            )
            for tag in image_sizes.defaulted:
                await emit(AssemblyEventType.IMAGE_DEFAULTED, tag=tag)

            # ----------------------------------------------------------
            # 4. Rendering
            # ----------------------------------------------------------
            data = await asyncio.to_thread(
                self.renderer.render, template.data, tag_map, image_sizes
            )
            await emit(AssemblyEventType.RENDER_COMPLETED, size=len(data))

        except AssemblyError as exc:
            logger.warning("Assembly %s failed at %s: %s", assembly_id, exc.stage.value, exc)
            await emit(
                AssemblyEventType.ASSEMBLY_FAILED,
                stage=exc.stage.value,
                error=str(exc),
            )
            raise

        document = AssembledDocument(
            data=data,
            template_name=template.name,
            filename=self.default_filename(record),
        )
        await emit(
            AssemblyEventType.ASSEMBLY_COMPLETED,
            template=template.name,
            filename=document.filename,
        )
        return document

    async def assemble_and_save(
        self,
        record: DocumentDataModel,
        sink: Optional[DocumentSink] = None,
        template_name: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Path:
        """
        Assemble, then hand the bytes to ``sink`` exactly once.

        ``sink`` defaults to the orchestrator's own (the configured workspace
        directory when built from settings). Nothing is saved when assembly
        fails.
        """
        sink = sink or self.sink
        if sink is None:
            raise ValueError("No document sink configured")
        document = await self.assemble_document(record, template_name)
        return await asyncio.to_thread(
            sink.save, document.data, filename or document.filename
        )

    def default_filename(self, record: DocumentDataModel) -> str:
        return default_filename(
            self.document_type,
            record.customer_name,
            on=record.document_date,
            extension=self.extension,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _emit(
        emitter: AssemblyEventEmitter,
        assembly_id: str,
        event_type: AssemblyEventType,
        details: Optional[Dict[str, Any]],
    ) -> None:
        try:
            await emitter.emit(
                AssemblyEvent(
                    assembly_id=assembly_id,
                    event_type=event_type,
                    details=details,
                )
            )
        except Exception:
            # Observability must never break an assembly
            logger.debug("Event emission failed for %s", event_type.value, exc_info=True)

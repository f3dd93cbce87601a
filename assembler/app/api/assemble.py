"""
Document assembly endpoints.

Clients supply the business record only. Template resolution, binding,
image sizing and rendering are performed by the AssemblyOrchestrator.

The X-Template-Name response header names the template actually used,
which differs from the requested one whenever the fallback chain kicked
in.
"""

import io
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from assembler.app.engine.errors import NoTemplateAvailable, RenderBindingError
from assembler.app.engine.orchestrator import AssembledDocument, AssemblyOrchestrator
from assembler.app.engine.renderer import DOCX_MEDIA_TYPE
from assembler.app.schemas.document import DocumentDataModel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Assembly"])


# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------


def get_orchestrator(request: Request) -> AssemblyOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise RuntimeError("orchestrator not initialized")
    return orchestrator


# ---------------------------------------------------------------------------
# Shared execution
# ---------------------------------------------------------------------------


async def _assemble(
    orchestrator: AssemblyOrchestrator,
    record: DocumentDataModel,
    template_name: Optional[str],
) -> StreamingResponse:
    try:
        document = await orchestrator.assemble_document(record, template_name)
    except NoTemplateAvailable as exc:
        logger.warning("No template available: tried %s", exc.tried)
        raise HTTPException(
            status_code=404,
            detail={"message": "No template available.", "tried": exc.tried},
        ) from exc
    except RenderBindingError as exc:
        logger.warning("Template rendering failed: %s", exc.messages)
        raise HTTPException(
            status_code=422,
            detail={"message": "Template rendering failed.", "errors": exc.messages},
        ) from exc
    except Exception as exc:
        logger.exception("Document assembly failed for template='%s'", template_name)
        raise HTTPException(
            status_code=500,
            detail="Document assembly failed. See service logs for details.",
        ) from exc

    return _document_response(document)


def _document_response(document: AssembledDocument) -> StreamingResponse:
    return StreamingResponse(
        io.BytesIO(document.data),
        media_type=DOCX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{document.filename}"',
            "X-Template-Name": document.template_name,
        },
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post(
    "/assemble",
    summary="Assemble a document from the record's template",
    response_class=StreamingResponse,
)
async def assemble_default(
    record: DocumentDataModel = Body(...),
    orchestrator: AssemblyOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """
    Assemble using ``templateFileName`` from the record, or the
    configured default template.
    """
    return await _assemble(orchestrator, record, None)


@router.post(
    "/assemble/{template_name}",
    summary="Assemble a document from a named template",
    response_class=StreamingResponse,
)
async def assemble_named(
    template_name: str,
    record: DocumentDataModel = Body(...),
    orchestrator: AssemblyOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    return await _assemble(orchestrator, record, template_name)

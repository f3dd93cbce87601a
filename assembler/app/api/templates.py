"""
Template discovery endpoint.

Lists the template packages present in a directory-based template root.
Remote roots cannot be enumerated, so only templates already fetched
are reported for them.
"""

from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["Templates"])


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TemplateListResponse(BaseModel):
    default: str
    fallback: str
    templates: List[str]


# ---------------------------------------------------------------------------
# GET /templates
# ---------------------------------------------------------------------------


@router.get(
    "/templates",
    response_model=TemplateListResponse,
    summary="List available document templates",
)
def list_templates(request: Request) -> TemplateListResponse:
    settings = request.app.state.settings
    store = request.app.state.template_store
    return TemplateListResponse(
        default=settings.default_template_name,
        fallback=settings.fallback_template_name,
        templates=store.available(),
    )

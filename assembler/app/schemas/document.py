"""
Caller-supplied business record for document assembly.

The record arrives fully formed: pricing arithmetic and AI-generated
prose are produced upstream and only formatted here. Field names are
accepted both in camelCase (the wire format of the forms that collect
them) and in snake_case.
"""

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SectionKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class ContentSection(BaseModel):
    """
    A caller-defined block of text or image content.

    The section is bound under ``template_tag`` when given, otherwise
    under a tag derived from ``name``.
    """

    name: str = Field(
        ...,
        description="Display name of the section.",
    )

    kind: SectionKind = Field(
        SectionKind.TEXT,
        alias="type",
        description="Section kind. Image sections carry a data URI.",
    )

    content: str = Field(
        "",
        description=(
            "Raw or markdown text for text sections; a "
            "'data:image/<subtype>;base64,...' payload for image sections."
        ),
    )

    template_tag: Optional[str] = Field(
        default=None,
        description="Explicit placeholder tag. Derived from name when absent.",
    )

    enabled: bool = Field(
        True,
        alias="enabledByDefault",
        description="Disabled sections are not bound at all.",
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class DocumentDataModel(BaseModel):
    """
    Business data merged into a document template.
    """

    # ------------------------------------------------------------------
    # Customer & document identity
    # ------------------------------------------------------------------
    customer_name: str = ""
    customer_contact: Optional[str] = None
    sow_title: str = ""
    practice_area: str = ""
    sow_type: str = ""
    document_date: Optional[date] = Field(
        default=None,
        description="Document date. Defaults to today at bind time.",
    )

    # ------------------------------------------------------------------
    # Narrative
    # ------------------------------------------------------------------
    executive_summary: str = ""
    scope: str = ""
    methodology: str = ""
    recommendations: str = ""

    ai_summary: Optional[str] = None
    ai_findings: Optional[str] = None
    ai_recommendations: Optional[str] = None
    ai_scope: Optional[str] = None

    # ------------------------------------------------------------------
    # Pricing (already computed upstream)
    # ------------------------------------------------------------------
    estimated_hours: float = 0
    hourly_rate: Optional[float] = None
    total_price: Optional[float] = None
    monthly_price: Optional[float] = None
    duration_months: Optional[int] = None
    derive_monthly_price: bool = Field(
        False,
        description="Bind monthlyPrice as totalPrice / 12 when no monthly price is given.",
    )

    # ------------------------------------------------------------------
    # Template selection & dynamic content
    # ------------------------------------------------------------------
    template_file_name: Optional[str] = None
    content_sections: List[ContentSection] = Field(default_factory=list)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

"""
Business record to tag map binding.

The field table intentionally exposes some fields under several tag
names (e.g. the title as both ``sowTitle`` and ``assessmentTitle``) so
templates authored for sibling document types keep working.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from assembler.app.engine.tags import (
    ImageReference,
    LoopItems,
    TagMap,
    TagValue,
    derive_tag,
)
from assembler.app.schemas.document import (
    ContentSection,
    DocumentDataModel,
    SectionKind,
)

logger = logging.getLogger(__name__)

SECTIONS_LOOP_TAG = "sections"

# Fixed English names; strftime("%B") follows the process locale.
_MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_currency(value: Optional[float], symbol: str = "$") -> str:
    """Fixed-point currency with thousands separators, e.g. ``$6,000.00``."""
    if value is None:
        value = 0
    return f"{symbol}{value:,.2f}"


def format_number(value: Optional[float]) -> str:
    """Plain number without a trailing ``.0`` for whole values."""
    if value is None:
        return "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_long_date(value: date) -> str:
    """Long-form date, e.g. ``October 19, 2026``."""
    return f"{_MONTHS[value.month - 1]} {value.day}, {value.year}"


def section_tag(section: ContentSection) -> str:
    """Effective tag of a section: explicit tag, else derived from its name."""
    if section.template_tag:
        return section.template_tag
    return derive_tag(section.name)


def enabled_sections(record: DocumentDataModel) -> List[Tuple[int, ContentSection]]:
    """Enabled sections paired with their ordinal among enabled sections."""
    return list(
        enumerate(s for s in record.content_sections if s.enabled)
    )


# ---------------------------------------------------------------------------
# Binder
# ---------------------------------------------------------------------------


class PlaceholderBinder:
    """
    Converts a DocumentDataModel into a flat TagMap.

    ``today`` is injectable so repeated binds of the same record are
    identical regardless of wall-clock time.
    """

    def __init__(
        self,
        *,
        currency_symbol: str = "$",
        today: Callable[[], date] = date.today,
    ) -> None:
        self._currency_symbol = currency_symbol
        self._today = today

    def bind(self, record: DocumentDataModel) -> TagMap:
        tag_map: TagMap = {}
        tag_map.update(self._bind_fields(record))

        tag_map[SECTIONS_LOOP_TAG] = self.text_sections(record)

        for index, section in enabled_sections(record):
            tag = section_tag(section)
            value = self._section_value(tag, section)
            if tag in tag_map:
                logger.debug("Section '%s' overwrites tag '%s'", section.name, tag)
            tag_map[tag] = value
            tag_map[f"section_{index}"] = value

        return tag_map

    def text_sections(self, record: DocumentDataModel) -> LoopItems:
        """Ordered text-only sections for templates that loop over sections."""
        return [
            {
                "tag": section_tag(section),
                "name": section.name,
                "content": section.content,
            }
            for _, section in enabled_sections(record)
            if section.kind == SectionKind.TEXT
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bind_fields(self, record: DocumentDataModel) -> Dict[str, str]:
        money = self._money
        customer = record.customer_name or "Customer"
        title = record.sow_title or "Statement of Work"

        fields: Dict[str, str] = {
            "companyName": customer,
            "customerName": customer,
            "customerContact": record.customer_contact or record.customer_name or "",
            "assessmentTitle": title,
            "sowTitle": title,
            "practiceArea": record.practice_area,
            "assessmentType": record.sow_type,
            "sowType": record.sow_type,
            "currentDate": format_long_date(record.document_date or self._today()),
            "executiveSummary": record.executive_summary,
            "scope": record.scope,
            "methodology": record.methodology,
            "recommendations": record.recommendations,
            "estimatedHours": format_number(record.estimated_hours),
            "hourlyRate": money(record.hourly_rate),
            "totalPrice": money(record.total_price),
            "AI_Summary": record.ai_summary or record.executive_summary,
            "AI_Findings": record.ai_findings or "",
            "AI_Recommendations": record.ai_recommendations or record.recommendations,
            "AI_Scope": record.ai_scope or record.scope,
        }

        if record.monthly_price is not None:
            fields["monthlyPrice"] = money(record.monthly_price)
        elif record.derive_monthly_price:
            fields["monthlyPrice"] = money((record.total_price or 0) / 12)

        if record.duration_months is not None:
            fields["durationMonths"] = str(record.duration_months)

        return fields

    def _money(self, value: Optional[float]) -> str:
        return format_currency(value, self._currency_symbol)

    @staticmethod
    def _section_value(tag: str, section: ContentSection) -> TagValue:
        if section.kind == SectionKind.IMAGE:
            image = ImageReference.parse(tag, section.content)
            if image is None:
                logger.warning(
                    "Image section '%s' has no valid image payload; bound as empty text",
                    section.name,
                )
                return ""
            return image
        return section.content

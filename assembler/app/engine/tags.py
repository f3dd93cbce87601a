"""
Tag derivation and tag map lookup.

Tags are the keys placeholders use to address bound values. Tags derived
from free-form section names go through a single pure function so the
binder and any other caller agree on the result.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


_NON_IDENTIFIER = re.compile(r"[^A-Za-z0-9]")

_IMAGE_DATA_URI = re.compile(
    r"^data:image/(?P<subtype>[A-Za-z0-9.+-]+);base64,(?P<payload>.*)$",
    re.DOTALL,
)

IMAGE_PAYLOAD_PREFIX = "data:image/"

_EXTENSIONS = {
    "png": "png",
    "jpeg": "jpeg",
    "jpg": "jpeg",
    "pjpeg": "jpeg",
    "gif": "gif",
    "bmp": "bmp",
    "x-ms-bmp": "bmp",
    "tiff": "tiff",
    "webp": "webp",
}


def derive_tag(name: str) -> str:
    """
    Derive a placeholder tag from a section name.

    Every character outside ``[A-Za-z0-9]`` is replaced with ``_``. The
    function is total: the empty name maps to the empty tag.
    """
    return _NON_IDENTIFIER.sub("_", name or "")


@dataclass(frozen=True)
class ImageReference:
    """
    A validated image payload bound to a tag.

    ``payload`` is the raw data URI exactly as supplied; it doubles as
    the cache key for pre-resolved image sizes.
    """

    tag: str
    payload: str
    mime_type: str
    data: bytes

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.mime_type.split("/", 1)[1], "png")

    @classmethod
    def parse(cls, tag: str, payload: str) -> Optional["ImageReference"]:
        """
        Parse a data URI into an ImageReference.

        Returns None when the payload is not an image data URI or its
        base64 body is invalid.
        """
        if not payload or not payload.startswith(IMAGE_PAYLOAD_PREFIX):
            return None

        match = _IMAGE_DATA_URI.match(payload.strip())
        if match is None:
            return None

        subtype = match.group("subtype").lower()
        if subtype not in _EXTENSIONS:
            return None

        try:
            data = base64.b64decode(
                "".join(match.group("payload").split()), validate=True
            )
        except (binascii.Error, ValueError):
            return None

        if not data:
            return None

        return cls(
            tag=tag,
            payload=payload,
            mime_type=f"image/{subtype}",
            data=data,
        )


LoopItems = List[Dict[str, str]]
TagValue = Union[str, ImageReference, LoopItems]
TagMap = Dict[str, TagValue]


# ---------------------------------------------------------------------------
# Tri-state lookup
# ---------------------------------------------------------------------------


class TagLookup(str, Enum):
    """
    Outcome of looking a tag up in a TagMap.

    FOUND   the tag is bound to a non-empty value
    EMPTY   the tag is bound, but to an empty value
    ABSENT  the tag is not bound; substitutes to empty text
    """

    FOUND = "found"
    EMPTY = "empty"
    ABSENT = "absent"


def lookup(tag_map: TagMap, tag: str) -> Tuple[TagLookup, TagValue]:
    """
    Look a tag up, making the missing-tag policy an explicit branch.

    The returned value is always renderable: ABSENT and EMPTY lookups
    yield the empty string (or the empty list for loop values).
    """
    if tag not in tag_map:
        return TagLookup.ABSENT, ""

    value = tag_map[tag]
    if value is None:
        return TagLookup.EMPTY, ""
    if isinstance(value, ImageReference):
        return TagLookup.FOUND, value
    if isinstance(value, list):
        return (TagLookup.FOUND if value else TagLookup.EMPTY), value
    if value == "":
        return TagLookup.EMPTY, ""
    return TagLookup.FOUND, value

"""
Image size pre-resolution.

Rendering is synchronous, but measuring an image means decoding its
raster. This module runs all decodes up front, concurrently, and hands
the renderer a fully populated size table, so the renderer only ever
performs lookups.

Sizes are CSS pixels (96 dpi), the same unit the renderer converts to
EMU when sizing inline drawings.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from assembler.app.engine.binder import section_tag
from assembler.app.engine.errors import ImageDecodeFailure
from assembler.app.engine.tags import ImageReference, TagMap
from assembler.app.schemas.document import ContentSection, SectionKind

logger = logging.getLogger(__name__)

Size = Tuple[int, int]

DEFAULT_MAX_BOX: Size = (600, 800)
DEFAULT_FALLBACK_SIZE: Size = (400, 300)


def fit_within_box(width: int, height: int, box: Size) -> Size:
    """
    Scale (width, height) down to fit inside ``box``, keeping aspect ratio.

    The width clamp is applied first, then the height clamp on the
    already-scaled result, so extreme aspect ratios end up bounded on
    both axes. Images already inside the box are returned unchanged.
    """
    max_width, max_height = box
    w, h = float(width), float(height)

    if w > max_width:
        ratio = max_width / w
        w, h = max_width, h * ratio

    if h > max_height:
        ratio = max_height / h
        w, h = w * ratio, max_height

    return max(1, min(max_width, round(w))), max(1, min(max_height, round(h)))


def measure_image(data: bytes) -> Size:
    """
    Decode the raster and return its pixel dimensions.

    The full image is loaded rather than trusting header metadata, so a
    truncated or corrupt body fails here.
    """
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        width, height = img.size
    if width <= 0 or height <= 0:
        raise ValueError(f"degenerate image size {width}x{height}")
    return width, height


class ImageSizeCache:
    """
    Pre-resolved image sizes, addressable by tag or by raw payload.

    ``defaulted`` lists the tags whose images could not be measured and
    received the fallback size.
    """

    def __init__(self, fallback: Size = DEFAULT_FALLBACK_SIZE) -> None:
        self.fallback = fallback
        self.defaulted: List[str] = []
        self._by_tag: Dict[str, Size] = {}
        self._by_payload: Dict[str, Size] = {}

    def put(self, tag: str, payload: str, size: Size) -> None:
        self._by_tag[tag] = size
        self._by_payload[payload] = size

    def get(
        self,
        tag: Optional[str] = None,
        payload: Optional[str] = None,
    ) -> Optional[Size]:
        if tag is not None and tag in self._by_tag:
            return self._by_tag[tag]
        if payload is not None and payload in self._by_payload:
            return self._by_payload[payload]
        return None

    def size_for(self, tag: str, image: ImageReference) -> Size:
        """Size by placeholder tag, then by payload, else the fallback."""
        return (
            self.get(tag=tag)
            or self.get(payload=image.payload)
            or self.fallback
        )

    def __len__(self) -> int:
        return len(self._by_payload)

    def __contains__(self, key: str) -> bool:
        return key in self._by_tag or key in self._by_payload


class ImageAssetPipeline:
    """
    Measures every image of a record concurrently.

    Decode failures and timeouts never fail the pipeline: the affected
    image gets the fallback size and an operator-visible warning.
    """

    def __init__(
        self,
        *,
        max_box: Size = DEFAULT_MAX_BOX,
        fallback_size: Size = DEFAULT_FALLBACK_SIZE,
        decode_timeout_seconds: float = 5.0,
    ) -> None:
        self.max_box = max_box
        self.fallback_size = fallback_size
        self._timeout = decode_timeout_seconds

    async def preload(
        self,
        tag_map: TagMap,
        sections: Iterable[ContentSection],
    ) -> ImageSizeCache:
        """
        Resolve the display size of every valid image.

        Images come from the enabled image sections and from any image
        value already bound in ``tag_map``. Returns only after every
        decode task has finished.
        """
        cache = ImageSizeCache(fallback=self.fallback_size)

        images = self._collect(tag_map, sections)
        if not images:
            return cache

        # One decode per distinct payload; several tags may share it.
        unique: Dict[str, ImageReference] = {}
        for image in images:
            unique.setdefault(image.payload, image)

        results = await asyncio.gather(
            *(self._resolve_size(image) for image in unique.values())
        )
        by_payload: Dict[str, Size] = {}
        for image, (size, ok) in zip(unique.values(), results):
            by_payload[image.payload] = size
            if not ok:
                cache.defaulted.append(image.tag)

        for image in images:
            cache.put(image.tag, image.payload, by_payload[image.payload])

        logger.debug(
            "Preloaded %d image size(s), %d defaulted",
            len(unique),
            len(cache.defaulted),
        )
        return cache

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _collect(
        tag_map: TagMap,
        sections: Iterable[ContentSection],
    ) -> List[ImageReference]:
        images: List[ImageReference] = []

        for section in sections:
            if not section.enabled or section.kind != SectionKind.IMAGE:
                continue
            image = ImageReference.parse(section_tag(section), section.content)
            if image is not None:
                images.append(image)

        for tag, value in tag_map.items():
            if isinstance(value, ImageReference) and value.tag == tag:
                images.append(value)

        return images

    async def _resolve_size(self, image: ImageReference) -> Tuple[Size, bool]:
        try:
            try:
                width, height = await asyncio.wait_for(
                    asyncio.to_thread(measure_image, image.data),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as exc:
                raise ImageDecodeFailure(image.tag, "decode timed out") from exc
            except (
                UnidentifiedImageError,
                Image.DecompressionBombError,
                OSError,
                ValueError,
            ) as exc:
                raise ImageDecodeFailure(image.tag, str(exc)) from exc
        except ImageDecodeFailure as failure:
            logger.warning("%s; using fallback size %s", failure, self.fallback_size)
            return self.fallback_size, False

        return fit_within_box(width, height, self.max_box), True

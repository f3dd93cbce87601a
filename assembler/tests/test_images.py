"""
Tests for bounded-fit scaling and concurrent image size pre-resolution.
"""

import base64
import logging
import threading
import time

import pytest

from assembler.app.engine import images
from assembler.app.engine.images import (
    ImageAssetPipeline,
    ImageSizeCache,
    fit_within_box,
    measure_image,
)
from assembler.app.engine.tags import ImageReference
from assembler.app.schemas.document import ContentSection, SectionKind
from assembler.tests.fixtures.docx_factory import png_bytes, png_data_uri

pytestmark = pytest.mark.anyio

BOX = (600, 800)


def image_section(name, payload, enabled=True):
    return ContentSection(name=name, kind=SectionKind.IMAGE, content=payload, enabled=enabled)


# ---------------------------------------------------------------------------
# fit_within_box
# ---------------------------------------------------------------------------

def test_small_images_are_unchanged():
    assert fit_within_box(100, 50, BOX) == (100, 50)
    assert fit_within_box(600, 800, BOX) == (600, 800)


def test_wide_image_clamped_by_width():
    assert fit_within_box(1200, 600, BOX) == (600, 300)


def test_tall_image_clamped_by_height():
    assert fit_within_box(600, 1600, BOX) == (300, 800)


def test_extreme_aspect_ratio_fits_both_axes():
    # Width clamp alone would leave the height at 10000
    assert fit_within_box(6000, 100000, BOX) == (48, 800)


@pytest.mark.parametrize(
    "width, height",
    [(1200, 600), (4000, 3000), (601, 801), (900, 5000), (3000, 10), (10, 3000)],
)
def test_fit_keeps_aspect_ratio_within_rounding(width, height):
    w, h = fit_within_box(width, height, BOX)

    assert 1 <= w <= BOX[0]
    assert 1 <= h <= BOX[1]
    # One pixel of rounding on the shorter side
    assert abs(w * height - h * width) <= max(width, height)


def test_measure_image_reads_pixel_size():
    assert measure_image(png_bytes(17, 9)) == (17, 9)


def test_measure_image_rejects_garbage():
    with pytest.raises(Exception):
        measure_image(b"definitely not an image")


# ---------------------------------------------------------------------------
# ImageSizeCache
# ---------------------------------------------------------------------------

def test_cache_lookup_order_and_fallback():
    image = ImageReference.parse("logo", png_data_uri(2, 2))
    cache = ImageSizeCache(fallback=(400, 300))

    assert cache.size_for("logo", image) == (400, 300)

    cache.put("other", image.payload, (20, 10))
    assert cache.size_for("logo", image) == (20, 10)

    cache.put("logo", "different-payload", (5, 5))
    assert cache.size_for("logo", image) == (5, 5)
    assert "logo" in cache
    assert len(cache) == 2


# ---------------------------------------------------------------------------
# ImageAssetPipeline.preload
# ---------------------------------------------------------------------------

async def test_preload_scales_section_images():
    pipeline = ImageAssetPipeline(max_box=BOX)
    sections = [image_section("Network Diagram", png_data_uri(1200, 600))]

    cache = await pipeline.preload({}, sections)

    assert cache.get(tag="Network_Diagram") == (600, 300)
    assert cache.defaulted == []


async def test_preload_skips_disabled_and_text_sections():
    pipeline = ImageAssetPipeline()
    sections = [
        image_section("Off", png_data_uri(10, 10), enabled=False),
        ContentSection(name="Text", content="hello"),
    ]

    cache = await pipeline.preload({}, sections)

    assert len(cache) == 0


async def test_preload_includes_images_bound_in_tag_map():
    image = ImageReference.parse("logo", png_data_uri(30, 20))

    cache = await ImageAssetPipeline().preload({"logo": image}, [])

    assert cache.get(tag="logo") == (30, 20)


async def test_undecodable_image_gets_fallback_size(caplog):
    payload = "data:image/png;base64," + base64.b64encode(b"not a png").decode()
    pipeline = ImageAssetPipeline(fallback_size=(400, 300))

    with caplog.at_level(logging.WARNING):
        cache = await pipeline.preload({}, [image_section("Broken", payload)])

    assert cache.get(tag="Broken") == (400, 300)
    assert cache.defaulted == ["Broken"]
    assert any("Broken" in r.getMessage() for r in caplog.records)


async def test_slow_decode_times_out_to_fallback(monkeypatch):
    def slow_measure(data):
        time.sleep(0.5)
        return 10, 10

    monkeypatch.setattr(images, "measure_image", slow_measure)
    pipeline = ImageAssetPipeline(fallback_size=(400, 300), decode_timeout_seconds=0.05)

    cache = await pipeline.preload({}, [image_section("Slow", png_data_uri(10, 10))])

    assert cache.get(tag="Slow") == (400, 300)
    assert cache.defaulted == ["Slow"]


async def test_shared_payload_is_decoded_once(monkeypatch):
    calls = []
    real_measure = images.measure_image

    def counting_measure(data):
        calls.append(len(data))
        return real_measure(data)

    monkeypatch.setattr(images, "measure_image", counting_measure)
    payload = png_data_uri(50, 40)
    sections = [image_section("First", payload), image_section("Second", payload)]

    cache = await ImageAssetPipeline().preload({}, sections)

    assert len(calls) == 1
    assert cache.get(tag="First") == cache.get(tag="Second") == (50, 40)


async def test_one_failure_does_not_affect_other_images():
    broken = "data:image/png;base64," + base64.b64encode(b"garbage").decode()
    sections = [
        image_section("Good", png_data_uri(64, 32)),
        image_section("Bad", broken),
    ]

    cache = await ImageAssetPipeline(fallback_size=(400, 300)).preload({}, sections)

    assert cache.get(tag="Good") == (64, 32)
    assert cache.get(tag="Bad") == (400, 300)
    assert cache.defaulted == ["Bad"]


async def test_distinct_payloads_are_decoded_concurrently(monkeypatch):
    # Each decode waits for the other; run one at a time they break the barrier
    barrier = threading.Barrier(2, timeout=2)

    def rendezvous_measure(data):
        barrier.wait()
        return 10, 10

    monkeypatch.setattr(images, "measure_image", rendezvous_measure)
    sections = [
        image_section("Red", png_data_uri(10, 10, "red")),
        image_section("Blue", png_data_uri(10, 10, "blue")),
    ]
    pipeline = ImageAssetPipeline(decode_timeout_seconds=5)

    started = time.perf_counter()
    cache = await pipeline.preload({}, sections)
    elapsed = time.perf_counter() - started

    assert cache.defaulted == []
    assert cache.get(tag="Red") == cache.get(tag="Blue") == (10, 10)
    assert elapsed < 2

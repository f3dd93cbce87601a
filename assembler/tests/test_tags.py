"""
Tests for tag derivation, image payload parsing and tri-state lookup.
"""

import base64

import pytest

from assembler.app.engine.tags import (
    ImageReference,
    TagLookup,
    derive_tag,
    lookup,
)
from assembler.tests.fixtures.docx_factory import png_bytes, png_data_uri


# ---------------------------------------------------------------------------
# derive_tag
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "name, expected",
    [
        ("Executive Summary", "Executive_Summary"),
        ("Scope-Notes (v2)", "Scope_Notes__v2_"),
        ("3D Plan", "3D_Plan"),
        ("Résumé", "R_sum_"),
        ("already_valid_42", "already_valid_42"),
        ("", ""),
    ],
)
def test_derive_tag_replaces_every_non_alphanumeric(name, expected):
    assert derive_tag(name) == expected


def test_derive_tag_preserves_length():
    name = "a b/c.d-e"
    assert len(derive_tag(name)) == len(name)


def test_derive_tag_accepts_none():
    assert derive_tag(None) == ""


# ---------------------------------------------------------------------------
# ImageReference.parse
# ---------------------------------------------------------------------------

def test_parse_valid_png_payload():
    payload = png_data_uri(4, 3)
    image = ImageReference.parse("logo", payload)

    assert image is not None
    assert image.tag == "logo"
    assert image.payload == payload
    assert image.mime_type == "image/png"
    assert image.extension == "png"
    assert image.data == png_bytes(4, 3)


def test_parse_normalizes_jpg_extension():
    payload = "data:image/jpg;base64," + base64.b64encode(b"\xff\xd8\xff").decode()
    image = ImageReference.parse("photo", payload)

    assert image is not None
    assert image.extension == "jpeg"


@pytest.mark.parametrize(
    "payload",
    [
        "",
        "plain text content",
        "data:text/plain;base64,aGVsbG8=",
        "data:image/png;base64,!!!not-base64!!!",
        "data:image/png;base64,",
        "data:image/svg+xml;base64,PHN2Zy8+",
        "data:image/png,rawdata",
    ],
)
def test_parse_rejects_invalid_payloads(payload):
    assert ImageReference.parse("tag", payload) is None


# ---------------------------------------------------------------------------
# lookup
# ---------------------------------------------------------------------------

def test_lookup_absent_tag_yields_empty_text():
    assert lookup({}, "missing") == (TagLookup.ABSENT, "")


def test_lookup_empty_and_found_values():
    tag_map = {"blank": "", "name": "Acme", "items": [], "more": [{"a": "1"}]}

    assert lookup(tag_map, "blank") == (TagLookup.EMPTY, "")
    assert lookup(tag_map, "name") == (TagLookup.FOUND, "Acme")
    assert lookup(tag_map, "items") == (TagLookup.EMPTY, [])
    assert lookup(tag_map, "more") == (TagLookup.FOUND, [{"a": "1"}])


def test_lookup_image_reference_is_found():
    image = ImageReference.parse("logo", png_data_uri(2, 2))
    state, value = lookup({"logo": image}, "logo")

    assert state == TagLookup.FOUND
    assert value is image

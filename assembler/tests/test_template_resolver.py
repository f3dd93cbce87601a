"""
Tests for the template fallback chain.
"""

import logging

import pytest

from assembler.app.engine.errors import AssemblyStage, NoTemplateAvailable
from assembler.app.engine.template_resolver import TemplateResolver
from assembler.app.engine.template_store import TemplateStore

DEFAULT = "SOW-Template.docx"
FALLBACK = "Assessment-Template.docx"


class CountingStore(TemplateStore):
    """TemplateStore that records every disk read."""

    def __init__(self, root):
        super().__init__(root)
        self.reads = []

    def _read_local(self, name):
        self.reads.append(name)
        return super()._read_local(name)


@pytest.fixture
def store(tmp_path):
    return CountingStore(tmp_path)


def _resolver(store):
    return TemplateResolver(store, default_name=DEFAULT, fallback_name=FALLBACK)


def test_existing_template_resolves_without_fallback(tmp_path, store, caplog):
    (tmp_path / "Custom.docx").write_bytes(b"custom")
    (tmp_path / DEFAULT).write_bytes(b"default")

    with caplog.at_level(logging.WARNING):
        resource = _resolver(store).resolve_resource("Custom.docx")

    assert resource.name == "Custom.docx"
    assert resource.data == b"custom"
    assert store.reads == ["Custom.docx"]
    assert not caplog.records


def test_missing_template_falls_back_to_default(tmp_path, store, caplog):
    (tmp_path / DEFAULT).write_bytes(b"default")

    with caplog.at_level(logging.WARNING):
        data = _resolver(store).resolve("Missing.docx")

    assert data == b"default"
    assert store.reads.count("Missing.docx") == 1
    assert any("falling back" in r.getMessage() for r in caplog.records)


def test_last_resort_template_is_used_when_default_missing(tmp_path, store):
    (tmp_path / FALLBACK).write_bytes(b"assessment")

    resource = _resolver(store).resolve_resource("Missing.docx")

    assert resource.name == FALLBACK
    assert store.reads == ["Missing.docx", DEFAULT, FALLBACK]


def test_exhausted_chain_raises_no_template_available(store):
    with pytest.raises(NoTemplateAvailable) as excinfo:
        _resolver(store).resolve("Missing.docx")

    assert excinfo.value.tried == ["Missing.docx", DEFAULT, FALLBACK]
    assert excinfo.value.stage == AssemblyStage.RESOLVE


def test_candidates_never_repeat_a_name(store):
    resolver = _resolver(store)

    assert resolver.candidates(None) == [DEFAULT, FALLBACK]
    assert resolver.candidates(DEFAULT) == [DEFAULT, FALLBACK]
    assert resolver.candidates(FALLBACK) == [FALLBACK, DEFAULT]


def test_chain_without_last_resort(store):
    resolver = TemplateResolver(store, default_name=DEFAULT)

    with pytest.raises(NoTemplateAvailable) as excinfo:
        resolver.resolve(None)

    assert excinfo.value.tried == [DEFAULT]

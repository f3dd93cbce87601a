"""
Template package renderer.

Transforms a template package (``.docx`` zip of XML parts) plus a bound
TagMap into a finished package. Rendering is purely synchronous and
performs no I/O: image sizes must already be resolved (see
``images.ImageAssetPipeline``), the renderer only looks them up.

PLACEHOLDER SYNTAX (single-brace delimiters):

    {tag}           value substitution (text or image)
    {%tag}          image placeholder
    {#tag} {/tag}   paragraph loop; each marker alone in its paragraph

Placeholders are matched on the joined text of a paragraph, so tags
split across runs by the word processor still resolve.

NULL SAFETY:
A tag missing from the TagMap renders as empty text. Partially
configured templates therefore always render. Structural problems
(corrupt package, malformed XML, unbalanced delimiters or loop markers)
are collected for the whole pass and reported together.
"""

from __future__ import annotations

import copy
import io
import logging
import re
import zipfile
import zlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from lxml import etree

from assembler.app.engine import ooxml
from assembler.app.engine.errors import RenderBindingError
from assembler.app.engine.images import ImageSizeCache
from assembler.app.engine.tags import (
    ImageReference,
    TagLookup,
    TagMap,
    TagValue,
    lookup,
)

logger = logging.getLogger(__name__)

MAIN_PART = "word/document.xml"
CONTENT_TYPES_PART = "[Content_Types].xml"

_CONTENT_PART = re.compile(
    r"^word/(document|header\d*|footer\d*|footnotes|endnotes)\.xml$"
)

DOCX_MEDIA_TYPE = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)


# ---------------------------------------------------------------------------
# Placeholder scanning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Placeholder:
    start: int
    end: int
    kind: str  # "value" | "image" | "open" | "close"
    name: str


_PREFIXES = {"#": "open", "/": "close", "%": "image"}


def scan_placeholders(text: str) -> Tuple[List[Placeholder], List[str]]:
    """
    Find every ``{...}`` placeholder in ``text``.

    Returns the placeholders in order and a list of delimiter errors
    (unclosed ``{``, unopened ``}``, empty tags).
    """
    found: List[Placeholder] = []
    errors: List[str] = []
    opened: Optional[int] = None

    for index, char in enumerate(text):
        if char == "{":
            if opened is not None:
                errors.append(f"Unclosed tag '{_excerpt(text, opened)}'")
            opened = index
        elif char == "}":
            if opened is None:
                errors.append(f"Unopened tag near '{_excerpt(text, max(0, index - 20))}'")
                continue
            raw = text[opened + 1:index].strip()
            kind = _PREFIXES.get(raw[:1], "value")
            name = raw[1:].strip() if kind != "value" else raw
            if not name:
                errors.append(f"Empty tag '{text[opened:index + 1]}'")
            else:
                found.append(Placeholder(opened, index + 1, kind, name))
            opened = None

    if opened is not None:
        errors.append(f"Unclosed tag '{_excerpt(text, opened)}'")

    return found, errors


def _excerpt(text: str, start: int, length: int = 30) -> str:
    snippet = text[start:start + length]
    return snippet + ("..." if len(text) > start + length else "")


def _loop_marker(paragraph: etree._Element) -> Optional[Placeholder]:
    """Return the loop marker when it is the only content of the paragraph."""
    text = ooxml.paragraph_text(paragraph)
    if "{" not in text:
        return None
    found, errors = scan_placeholders(text)
    if errors or len(found) != 1 or found[0].kind not in {"open", "close"}:
        return None
    marker = found[0]
    if text[:marker.start].strip() or text[marker.end:].strip():
        return None
    return marker


# ---------------------------------------------------------------------------
# Per-render package state
# ---------------------------------------------------------------------------


class _PackageSession:
    """
    State shared by all parts of one render pass.
    """

    def __init__(
        self,
        archive: zipfile.ZipFile,
        image_sizes: ImageSizeCache,
    ) -> None:
        self.archive = archive
        self.image_sizes = image_sizes
        self.errors: List[str] = []
        self.names = {info.filename for info in archive.infolist()}
        self.replaced: Dict[str, bytes] = {}
        self.media: Dict[str, Tuple[str, bytes]] = {}  # payload -> (zip name, data)
        self.extensions: Dict[str, str] = {}  # extension -> mime type
        self.docpr_counter = 0

    def read(self, name: str) -> Optional[bytes]:
        try:
            return self.archive.read(name)
        except (zipfile.BadZipFile, zlib.error, OSError) as exc:
            self.errors.append(f"{name}: corrupt package entry ({exc})")
            return None

    def parse(self, name: str) -> Optional[etree._Element]:
        raw = self.read(name)
        if raw is None:
            return None
        parser = etree.XMLParser(resolve_entities=False, remove_blank_text=False)
        try:
            return etree.fromstring(raw, parser)
        except etree.XMLSyntaxError as exc:
            self.errors.append(f"{name}: malformed XML ({exc})")
            return None

    def media_target(self, image: ImageReference) -> str:
        """Zip name of the media entry holding ``image``, created on first use."""
        existing = self.media.get(image.payload)
        if existing is not None:
            return existing[0]

        index = len(self.media) + 1
        name = f"word/media/assembled_image{index}.{image.extension}"
        while name in self.names:
            index += 1
            name = f"word/media/assembled_image{index}.{image.extension}"

        self.names.add(name)
        self.media[image.payload] = (name, image.data)
        self.extensions[image.extension] = image.mime_type
        return name


# ---------------------------------------------------------------------------
# Per-part rendering
# ---------------------------------------------------------------------------


class _PartRenderer:
    """
    Renders one XML part (document body, header, footer, notes).
    """

    def __init__(
        self,
        session: _PackageSession,
        name: str,
        root: etree._Element,
    ) -> None:
        self.session = session
        self.name = name
        self.root = root
        self.changed = False
        self.rels_root: Optional[etree._Element] = None
        self.rels_changed = False
        self._rids: Dict[str, str] = {}

        session.docpr_counter = max(session.docpr_counter, ooxml.max_docpr_id(root))

    @property
    def rels_name(self) -> str:
        folder, _, base = self.name.rpartition("/")
        return f"{folder}/_rels/{base}.rels"

    def render(self, tag_map: TagMap) -> None:
        self._process_sequence(self.root, list(self.root), [tag_map])

    # ------------------------------------------------------------------
    # Structure walk
    # ------------------------------------------------------------------

    def _process_sequence(
        self,
        container: etree._Element,
        elements: Sequence[etree._Element],
        scopes: List[TagMap],
    ) -> None:
        index = 0
        while index < len(elements):
            element = elements[index]

            if element.tag == ooxml.P:
                marker = _loop_marker(element)
                if marker is not None and marker.kind == "open":
                    close = self._find_close(elements, index, marker.name)
                    if close is None:
                        self._error(f"Unclosed loop '{{#{marker.name}}}'")
                        index += 1
                        continue
                    self._expand_loop(
                        container,
                        element,
                        elements[close],
                        list(elements[index + 1:close]),
                        marker.name,
                        scopes,
                    )
                    index = close + 1
                    continue
                if marker is not None and marker.kind == "close":
                    self._error(f"Unopened loop '{{/{marker.name}}}'")
                    index += 1
                    continue
                self._process_paragraph(element, scopes)
            else:
                self._process_sequence(element, list(element), scopes)
                if element.tag == ooxml.TC and element.find(ooxml.P) is None:
                    etree.SubElement(element, ooxml.P)

            index += 1

    @staticmethod
    def _find_close(
        elements: Sequence[etree._Element],
        open_index: int,
        name: str,
    ) -> Optional[int]:
        depth = 0
        for index in range(open_index + 1, len(elements)):
            element = elements[index]
            if element.tag != ooxml.P:
                continue
            marker = _loop_marker(element)
            if marker is None or marker.name != name:
                continue
            if marker.kind == "open":
                depth += 1
            elif depth == 0:
                return index
            else:
                depth -= 1
        return None

    def _expand_loop(
        self,
        container: etree._Element,
        open_p: etree._Element,
        close_p: etree._Element,
        block: List[etree._Element],
        name: str,
        scopes: List[TagMap],
    ) -> None:
        state, value = self._resolve(name, scopes)
        if isinstance(value, list):
            items = [item if isinstance(item, dict) else {} for item in value]
        elif state == TagLookup.FOUND:
            items = [{}]
        else:
            items = []

        for element in [open_p, *block]:
            container.remove(element)

        # Clones go before the closing marker, which stays put until every
        # item (and any nested loop inside it) has been expanded.
        for item in items:
            clones = [copy.deepcopy(element) for element in block]
            for clone in clones:
                close_p.addprevious(clone)
            self._process_sequence(container, clones, [*scopes, item])

        container.remove(close_p)
        self.changed = True

    # ------------------------------------------------------------------
    # Paragraph substitution
    # ------------------------------------------------------------------

    def _process_paragraph(
        self,
        paragraph: etree._Element,
        scopes: List[TagMap],
    ) -> None:
        for box in list(paragraph.iter(ooxml.TXBX)):
            if ooxml.owning_paragraph(box) is paragraph:
                self._process_sequence(box, list(box), scopes)

        nodes, text = ooxml.paragraph_snapshot(paragraph)
        if "{" not in text and "}" not in text:
            return

        placeholders, errors = scan_placeholders(text)
        for message in errors:
            self._error(message)
        if errors:
            return

        # Right to left, so earlier offsets stay valid.
        for placeholder in reversed(placeholders):
            if placeholder.kind in {"open", "close"}:
                self._error(
                    f"Loop tag '{text[placeholder.start:placeholder.end]}' "
                    "must be alone in its paragraph"
                )
                continue

            _, value = self._resolve(placeholder.name, scopes)

            if isinstance(value, ImageReference):
                self._insert_image(nodes, placeholder, value)
            elif isinstance(value, list):
                logger.debug(
                    "Loop value '%s' used as plain placeholder; rendered empty",
                    placeholder.name,
                )
                ooxml.splice_text(nodes, placeholder.start, placeholder.end, "")
            else:
                ooxml.splice_text(nodes, placeholder.start, placeholder.end, value)

        self.changed = True

    def _insert_image(
        self,
        nodes: ooxml.TextNodes,
        placeholder: Placeholder,
        image: ImageReference,
    ) -> None:
        spliced = ooxml.splice_text(nodes, placeholder.start, placeholder.end, "")
        if spliced is None:
            return
        node, offset = spliced

        run = ooxml.split_run_after(node, offset)
        if run is None:
            logger.warning(
                "%s: image placeholder '%s' is not inside a run; rendered empty",
                self.name,
                placeholder.name,
            )
            return

        width, height = self.session.image_sizes.size_for(placeholder.name, image)
        self.session.docpr_counter += 1
        picture = ooxml.make_picture_run(
            run,
            self._relationship_for(image),
            self.session.docpr_counter,
            width,
            height,
            description=image.tag,
        )
        run.addnext(picture)

    def _relationship_for(self, image: ImageReference) -> str:
        rid = self._rids.get(image.payload)
        if rid is not None:
            return rid

        if self.rels_root is None:
            if self.rels_name in self.session.names:
                self.rels_root = self.session.parse(self.rels_name)
            if self.rels_root is None:
                self.rels_root = ooxml.new_relationships_root()

        media_name = self.session.media_target(image)
        target = media_name[len("word/"):]
        rid = ooxml.add_image_relationship(self.rels_root, target)
        self._rids[image.payload] = rid
        self.rels_changed = True
        return rid

    # ------------------------------------------------------------------
    # Lookup & errors
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve(name: str, scopes: List[TagMap]) -> Tuple[TagLookup, TagValue]:
        """Innermost scope first; absent everywhere means empty."""
        for scope in reversed(scopes):
            state, value = lookup(scope, name)
            if state != TagLookup.ABSENT:
                return state, value
        return TagLookup.ABSENT, ""

    def _error(self, message: str) -> None:
        self.session.errors.append(f"{self.name}: {message}")


# ---------------------------------------------------------------------------
# Public renderer
# ---------------------------------------------------------------------------


class DocumentRenderer:
    """
    Synchronous placeholder substitution and image injection.
    """

    def render(
        self,
        template_bytes: bytes,
        tag_map: TagMap,
        image_sizes: Optional[ImageSizeCache] = None,
    ) -> bytes:
        """
        Render ``template_bytes`` with ``tag_map`` into a new package.

        Raises RenderBindingError listing every structural problem found.
        """
        image_sizes = image_sizes if image_sizes is not None else ImageSizeCache()

        try:
            archive = zipfile.ZipFile(io.BytesIO(template_bytes))
        except (zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            raise RenderBindingError(
                [f"Template is not a valid document package ({exc})"]
            ) from exc

        with archive:
            session = _PackageSession(archive, image_sizes)

            if MAIN_PART not in session.names:
                raise RenderBindingError(
                    [f"Template package has no main document part '{MAIN_PART}'"]
                )

            for info in archive.infolist():
                if _CONTENT_PART.match(info.filename):
                    self._render_part(session, info.filename, tag_map)

            if session.media:
                self._register_media_types(session)

            if session.errors:
                logger.warning(
                    "Render failed with %d structural error(s)", len(session.errors)
                )
                raise RenderBindingError(session.errors)

            return self._write_package(session)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _render_part(session: _PackageSession, name: str, tag_map: TagMap) -> None:
        root = session.parse(name)
        if root is None:
            return

        part = _PartRenderer(session, name, root)
        errors_before = len(session.errors)
        part.render(tag_map)

        if len(session.errors) > errors_before:
            return
        if part.changed:
            session.replaced[name] = ooxml.serialize(part.root)
        if part.rels_changed and part.rels_root is not None:
            session.replaced[part.rels_name] = ooxml.serialize(part.rels_root)

    @staticmethod
    def _register_media_types(session: _PackageSession) -> None:
        if CONTENT_TYPES_PART not in session.names:
            session.errors.append(f"Template package has no '{CONTENT_TYPES_PART}'")
            return
        types_root = session.parse(CONTENT_TYPES_PART)
        if types_root is None:
            return

        changed = False
        for extension, mime_type in sorted(session.extensions.items()):
            changed |= ooxml.ensure_default_content_type(types_root, extension, mime_type)
        if changed:
            session.replaced[CONTENT_TYPES_PART] = ooxml.serialize(types_root)

    @staticmethod
    def _write_package(session: _PackageSession) -> bytes:
        buffer = io.BytesIO()
        written = set()

        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as out:
            for info in session.archive.infolist():
                data = session.replaced.get(info.filename)
                if data is None:
                    data = session.archive.read(info.filename)
                out.writestr(_clone_info(info), data)
                written.add(info.filename)

            for name, data in session.replaced.items():
                if name not in written:
                    out.writestr(_new_info(name), data)
                    written.add(name)

            for name, data in session.media.values():
                out.writestr(_new_info(name), data)

        return buffer.getvalue()


def _clone_info(info: zipfile.ZipInfo) -> zipfile.ZipInfo:
    clone = zipfile.ZipInfo(info.filename, date_time=info.date_time)
    clone.compress_type = info.compress_type
    clone.external_attr = info.external_attr
    clone.create_system = info.create_system
    return clone


def _new_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=(1980, 1, 1, 0, 0, 0))
    info.compress_type = zipfile.ZIP_DEFLATED
    return info

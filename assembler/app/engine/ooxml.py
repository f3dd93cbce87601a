"""
WordprocessingML helpers.

Low-level element surgery used by the renderer: locating paragraph text
across runs, splicing replacement text into runs, splitting a run around
an insertion point and building inline picture drawings.
"""

from __future__ import annotations

import copy
import re
from typing import List, Optional, Tuple

from lxml import etree

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"
WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
PIC_NS = "http://schemas.openxmlformats.org/drawingml/2006/picture"
XML_NS = "http://www.w3.org/XML/1998/namespace"

IMAGE_REL_TYPE = f"{R_NS}/image"

P = f"{{{W_NS}}}p"
R = f"{{{W_NS}}}r"
T = f"{{{W_NS}}}t"
BR = f"{{{W_NS}}}br"
RPR = f"{{{W_NS}}}rPr"
TC = f"{{{W_NS}}}tc"
TXBX = f"{{{W_NS}}}txbxContent"
DOCPR = f"{{{WP_NS}}}docPr"
XML_SPACE = f"{{{XML_NS}}}space"

# One CSS pixel at 96 dpi.
EMU_PER_PIXEL = 9525

TextNodes = List[Tuple[etree._Element, int, int]]

# Characters XML 1.0 forbids in text (\t, \n, \r are allowed).
_XML_ILLEGAL = re.compile("[\x00-\x08\x0e-\x1f\ufffe\uffff\ud800-\udfff]")
_PAGE_BREAKS = str.maketrans({"\x0b": "\n", "\x0c": "\n"})


def clean_text(text: str) -> str:
    """
    Make a bound value safe for XML text.

    Vertical tabs and form feeds (Word soft breaks) become newlines; other
    characters illegal in XML 1.0, lone surrogates included, are dropped.
    """
    return _XML_ILLEGAL.sub("", text.translate(_PAGE_BREAKS))


def owning_paragraph(element: etree._Element) -> Optional[etree._Element]:
    parent = element.getparent()
    while parent is not None and parent.tag != P:
        parent = parent.getparent()
    return parent


def paragraph_snapshot(paragraph: etree._Element) -> Tuple[TextNodes, str]:
    """
    Text nodes owned by ``paragraph`` with their offsets, and the joined text.

    Text of paragraphs nested in text boxes belongs to those paragraphs
    and is skipped.
    """
    nodes: TextNodes = []
    parts: List[str] = []
    cursor = 0
    for t in paragraph.iter(T):
        if owning_paragraph(t) is not paragraph:
            continue
        text = t.text or ""
        nodes.append((t, cursor, cursor + len(text)))
        parts.append(text)
        cursor += len(text)
    return nodes, "".join(parts)


def paragraph_text(paragraph: etree._Element) -> str:
    return paragraph_snapshot(paragraph)[1]


def set_text(node: etree._Element, text: str) -> None:
    """
    Set the text of a ``w:t`` node, turning newlines into ``w:br`` breaks.

    ``text`` is passed through clean_text first.

    Additional ``w:br``/``w:t`` pairs are inserted right after ``node``;
    following siblings are left untouched.
    """
    lines = clean_text(text).replace("\r\n", "\n").split("\n")
    node.text = lines[0]
    node.set(XML_SPACE, "preserve")

    run = node.getparent()
    if len(lines) == 1 or run is None or run.tag != R:
        if len(lines) > 1:
            node.text = " ".join(lines)
        return

    position = run.index(node) + 1
    for line in lines[1:]:
        run.insert(position, etree.Element(BR))
        t = etree.Element(T)
        t.set(XML_SPACE, "preserve")
        t.text = line
        run.insert(position + 1, t)
        position += 2


def splice_text(
    nodes: TextNodes,
    start: int,
    end: int,
    replacement: str,
) -> Optional[Tuple[etree._Element, int]]:
    """
    Replace paragraph text ``[start, end)`` with ``replacement``.

    The replacement goes into the first overlapping node; the rest of the
    span is cut from the following nodes. Returns the receiving node and
    the offset right after the inserted text, or None if nothing overlaps.
    """
    replacement = clean_text(replacement)
    target: Optional[Tuple[etree._Element, int]] = None

    for node, node_start, node_end in nodes:
        if node_end <= start or node_start >= end:
            continue
        text = node.text or ""
        local_start = max(0, start - node_start)
        local_end = min(len(text), end - node_start)
        before, after = text[:local_start], text[local_end:]

        if target is None:
            offset = len(before) + len(replacement)
            if "\n" in replacement:
                set_text(node, before + replacement + after)
            else:
                node.text = before + replacement + after
                node.set(XML_SPACE, "preserve")
            target = (node, offset)
        else:
            node.text = before + after

    return target


def split_run_after(node: etree._Element, offset: int) -> Optional[etree._Element]:
    """
    Split the run containing ``node`` at ``offset`` characters into it.

    ``node`` keeps its first ``offset`` characters; the remainder and all
    following run content move into a new run (same formatting) inserted
    right after the original one. Returns the original run, or None when
    ``node`` is not inside a run.
    """
    run = node.getparent()
    if run is None or run.tag != R:
        return None

    text = node.text or ""
    head, tail = text[:offset], text[offset:]
    node.text = head

    trailing = list(run)[run.index(node) + 1:]
    if not tail and not trailing:
        return run

    new_run = etree.Element(R)
    rpr = run.find(RPR)
    if rpr is not None:
        new_run.append(copy.deepcopy(rpr))
    if tail:
        t = etree.SubElement(new_run, T)
        t.set(XML_SPACE, "preserve")
        t.text = tail
    for child in trailing:
        new_run.append(child)

    run.addnext(new_run)
    return run


def max_docpr_id(root: etree._Element) -> int:
    highest = 0
    for el in root.iter(DOCPR):
        try:
            highest = max(highest, int(el.get("id", "0")))
        except ValueError:
            continue
    return highest


def make_picture_run(
    template_run: Optional[etree._Element],
    rid: str,
    docpr_id: int,
    width_px: int,
    height_px: int,
    description: str = "",
) -> etree._Element:
    """
    Build a ``w:r`` holding an inline picture of the given pixel size.
    """
    cx = str(max(width_px, 1) * EMU_PER_PIXEL)
    cy = str(max(height_px, 1) * EMU_PER_PIXEL)
    name = f"Picture {docpr_id}"

    run = etree.Element(R)
    if template_run is not None:
        rpr = template_run.find(RPR)
        if rpr is not None:
            run.append(copy.deepcopy(rpr))

    drawing = etree.SubElement(run, f"{{{W_NS}}}drawing")
    inline = etree.SubElement(drawing, f"{{{WP_NS}}}inline")
    for key in ("distT", "distB", "distL", "distR"):
        inline.set(key, "0")

    extent = etree.SubElement(inline, f"{{{WP_NS}}}extent")
    extent.set("cx", cx)
    extent.set("cy", cy)
    effect = etree.SubElement(inline, f"{{{WP_NS}}}effectExtent")
    for key in ("l", "t", "r", "b"):
        effect.set(key, "0")

    docpr = etree.SubElement(inline, DOCPR)
    docpr.set("id", str(docpr_id))
    docpr.set("name", name)
    if description:
        docpr.set("descr", description)

    frame = etree.SubElement(inline, f"{{{WP_NS}}}cNvGraphicFramePr")
    etree.SubElement(frame, f"{{{A_NS}}}graphicFrameLocks").set("noChangeAspect", "1")

    graphic = etree.SubElement(inline, f"{{{A_NS}}}graphic")
    graphic_data = etree.SubElement(graphic, f"{{{A_NS}}}graphicData")
    graphic_data.set("uri", PIC_NS)

    pic = etree.SubElement(graphic_data, f"{{{PIC_NS}}}pic")
    nv_pic = etree.SubElement(pic, f"{{{PIC_NS}}}nvPicPr")
    c_nv_pr = etree.SubElement(nv_pic, f"{{{PIC_NS}}}cNvPr")
    c_nv_pr.set("id", "0")
    c_nv_pr.set("name", name)
    c_nv_pic_pr = etree.SubElement(nv_pic, f"{{{PIC_NS}}}cNvPicPr")
    locks = etree.SubElement(c_nv_pic_pr, f"{{{A_NS}}}picLocks")
    locks.set("noChangeAspect", "1")
    locks.set("noChangeArrowheads", "1")

    blip_fill = etree.SubElement(pic, f"{{{PIC_NS}}}blipFill")
    etree.SubElement(blip_fill, f"{{{A_NS}}}blip").set(f"{{{R_NS}}}embed", rid)
    stretch = etree.SubElement(blip_fill, f"{{{A_NS}}}stretch")
    etree.SubElement(stretch, f"{{{A_NS}}}fillRect")

    sp_pr = etree.SubElement(pic, f"{{{PIC_NS}}}spPr")
    xfrm = etree.SubElement(sp_pr, f"{{{A_NS}}}xfrm")
    off = etree.SubElement(xfrm, f"{{{A_NS}}}off")
    off.set("x", "0")
    off.set("y", "0")
    ext = etree.SubElement(xfrm, f"{{{A_NS}}}ext")
    ext.set("cx", cx)
    ext.set("cy", cy)
    geometry = etree.SubElement(sp_pr, f"{{{A_NS}}}prstGeom")
    geometry.set("prst", "rect")
    etree.SubElement(geometry, f"{{{A_NS}}}avLst")

    return run


def next_relationship_id(rels_root: etree._Element) -> str:
    highest = 0
    for rel in rels_root.iter(f"{{{REL_NS}}}Relationship"):
        rid = rel.get("Id", "")
        if rid.startswith("rId") and rid[3:].isdigit():
            highest = max(highest, int(rid[3:]))
    return f"rId{highest + 1}"


def add_image_relationship(rels_root: etree._Element, target: str) -> str:
    rid = next_relationship_id(rels_root)
    rel = etree.SubElement(rels_root, f"{{{REL_NS}}}Relationship")
    rel.set("Id", rid)
    rel.set("Type", IMAGE_REL_TYPE)
    rel.set("Target", target)
    return rid


def new_relationships_root() -> etree._Element:
    return etree.Element(f"{{{REL_NS}}}Relationships", nsmap={None: REL_NS})


def ensure_default_content_type(
    types_root: etree._Element,
    extension: str,
    content_type: str,
) -> bool:
    """Add a ``Default`` entry for ``extension``. Returns True if added."""
    for default in types_root.iter(f"{{{CT_NS}}}Default"):
        if (default.get("Extension") or "").lower() == extension.lower():
            return False
    entry = etree.Element(f"{{{CT_NS}}}Default")
    entry.set("Extension", extension)
    entry.set("ContentType", content_type)
    types_root.insert(0, entry)
    return True


def serialize(root: etree._Element) -> bytes:
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="UTF-8",
        standalone=True,
    )

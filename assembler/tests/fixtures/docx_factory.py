import base64
import io
import zipfile
from typing import Dict, Iterable, List, Optional, Union
from xml.sax.saxutils import escape

from lxml import etree
from PIL import Image

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"

NSMAP = {"w": W_NS, "r": R_NS, "wp": WP_NS}

_FIXED_DATE = (2024, 1, 1, 0, 0, 0)


# ------------------------------------------------------------------
# XML fragments
# ------------------------------------------------------------------

def run(text: str, bold: bool = False) -> str:
    rpr = "<w:rPr><w:b/></w:rPr>" if bold else ""
    return f'<w:r>{rpr}<w:t xml:space="preserve">{escape(text)}</w:t></w:r>'


def paragraph(*runs: str) -> str:
    """
    A paragraph built from text runs.

    ``paragraph("Hello {na", "me}")`` produces one paragraph whose
    placeholder is split across two runs, as Word often does.
    """
    return "<w:p>" + "".join(run(r) for r in runs) + "</w:p>"


def table(*rows: Iterable[str]) -> str:
    """A table; every cell holds the given (already built) XML."""
    body = "".join(
        "<w:tr>" + "".join(f"<w:tc>{cell}</w:tc>" for cell in row) + "</w:tr>"
        for row in rows
    )
    return f"<w:tbl>{body}</w:tbl>"


def document_xml(*blocks: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:document xmlns:w="{W_NS}" xmlns:r="{R_NS}" xmlns:wp="{WP_NS}">'
        "<w:body>" + "".join(blocks) + "<w:sectPr/></w:body></w:document>"
    )


def header_xml(*blocks: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:hdr xmlns:w="{W_NS}" xmlns:r="{R_NS}">' + "".join(blocks) + "</w:hdr>"
    )


# ------------------------------------------------------------------
# Packages
# ------------------------------------------------------------------

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    f'<Types xmlns="{CT_NS}">'
    '<Default Extension="rels" '
    'ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Override PartName="/word/document.xml" ContentType="application/'
    'vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    "</Types>"
)

PACKAGE_RELS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    f'<Relationships xmlns="{REL_NS}">'
    '<Relationship Id="rId1" Type="http://schemas.openxmlformats.org/'
    'officeDocument/2006/relationships/officeDocument" Target="word/document.xml"/>'
    "</Relationships>"
)


def make_docx(
    *blocks: str,
    headers: Optional[Dict[str, str]] = None,
    document: Optional[str] = None,
    extra_parts: Optional[Dict[str, Union[str, bytes]]] = None,
    content_types: bool = True,
) -> bytes:
    """
    Build a minimal in-memory .docx package.

    ``blocks`` become the body of ``word/document.xml`` unless a full
    ``document`` string is given. ``headers`` maps part names such as
    ``word/header1.xml`` to XML.
    """
    parts: Dict[str, Union[str, bytes]] = {}
    if content_types:
        parts["[Content_Types].xml"] = CONTENT_TYPES
    parts["_rels/.rels"] = PACKAGE_RELS
    parts["word/document.xml"] = document if document is not None else document_xml(*blocks)
    parts.update(headers or {})
    parts.update(extra_parts or {})

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, data in parts.items():
            info = zipfile.ZipInfo(name, date_time=_FIXED_DATE)
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, data)
    return buffer.getvalue()


def read_part(package: bytes, name: str) -> bytes:
    with zipfile.ZipFile(io.BytesIO(package)) as archive:
        return archive.read(name)


def part_names(package: bytes) -> List[str]:
    with zipfile.ZipFile(io.BytesIO(package)) as archive:
        return archive.namelist()


def parse_part(package: bytes, name: str = "word/document.xml") -> etree._Element:
    return etree.fromstring(read_part(package, name))


def paragraph_texts(package: bytes, name: str = "word/document.xml") -> List[str]:
    """
    Visible text of every paragraph, with ``w:br`` rendered as newline.
    """
    root = parse_part(package, name)
    texts = []
    for p in root.iter(f"{{{W_NS}}}p"):
        chunks = []
        for el in p.iter(f"{{{W_NS}}}t", f"{{{W_NS}}}br"):
            if el.tag == f"{{{W_NS}}}br":
                chunks.append("\n")
            else:
                chunks.append(el.text or "")
        texts.append("".join(chunks))
    return texts


def document_text(package: bytes, name: str = "word/document.xml") -> str:
    return "\n".join(paragraph_texts(package, name))


# ------------------------------------------------------------------
# Images
# ------------------------------------------------------------------

def png_bytes(width: int, height: int, color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_uri(width: int, height: int, color: str = "red") -> str:
    encoded = base64.b64encode(png_bytes(width, height, color)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def extents(package: bytes, name: str = "word/document.xml") -> List[tuple]:
    """(cx, cy) of every inline drawing, in EMU."""
    root = parse_part(package, name)
    return [
        (int(e.get("cx")), int(e.get("cy")))
        for e in root.iter(f"{{{WP_NS}}}extent")
    ]

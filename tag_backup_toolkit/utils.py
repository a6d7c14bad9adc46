"""
Utility functions for reading and writing L5X exports.

L5X files exported by Studio 5000 often begin with a UTF-8 BOM and keep
their tag data inside CDATA sections.  The helpers here strip the BOM before
handing the bytes to lxml, keep CDATA intact on parse, and write files back
in the form Studio 5000 expects.
"""

import os
import re
from typing import List
from urllib.parse import unquote, urlparse

from lxml import etree


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# UTF-8 BOM bytes.  Many L5X files exported from Studio 5000 begin with this.
_UTF8_BOM = b"\xef\xbb\xbf"

# Root element of every L5X document.
L5X_ROOT_TAG = "RSLogix5000Content"

# Declaration written at the top of L5X files.  lxml's own declaration uses
# single quotes, which Studio 5000 rejects.
_XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'

# L5K data is stored as CDATA inside <Data Format="L5K">.
_DATA_L5K_RE = re.compile(
    r'(<Data\s+Format="L5K"\s*>)'
    r'((?:(?!</Data>).)*?)'
    r'(</Data>)',
    re.DOTALL,
)


# ---------------------------------------------------------------------------
# Parsing / writing
# ---------------------------------------------------------------------------

def parse_l5x_bytes(raw: bytes) -> etree._Element:
    """Parse L5X content, returning the root element.

    Raises:
        etree.XMLSyntaxError: If the content is malformed XML.
        ValueError: If the root element is not ``RSLogix5000Content``.
    """
    if raw.startswith(_UTF8_BOM):
        raw = raw[len(_UTF8_BOM):]

    parser = etree.XMLParser(
        strip_cdata=False,
        remove_blank_text=False,
        recover=False,
    )
    root = etree.fromstring(raw, parser=parser)

    if root.tag != L5X_ROOT_TAG:
        raise ValueError(
            f"Expected root element '{L5X_ROOT_TAG}', got '{root.tag}'"
        )
    return root


def l5x_to_string(root: etree._Element) -> str:
    """Serialize an L5X tree with a Studio 5000 compatible declaration.

    ``<Data Format="L5K">`` text is re-wrapped in CDATA where lxml dropped it.
    """
    body = etree.tostring(
        root,
        xml_declaration=False,
        encoding='unicode',
        pretty_print=False,
    )
    return _XML_DECLARATION + _DATA_L5K_RE.sub(_wrap_l5k_cdata, body)


def write_l5x(root: etree._Element, file_path: str) -> None:
    """Write an L5X XML tree to a file.

    Produces output matching the format expected by Studio 5000:
    - UTF-8 encoding with BOM and XML declaration
    - CDATA sections preserved
    - Windows-style line endings (``\\r\\n``)
    """
    with open(file_path, 'w', encoding='utf-8-sig', newline='\r\n') as fh:
        fh.write(l5x_to_string(root))


def _wrap_l5k_cdata(match) -> str:
    open_tag, content, close_tag = match.group(1), match.group(2), match.group(3)
    stripped = content.strip()
    if not stripped or stripped.startswith('<![CDATA[') or stripped.startswith('<'):
        return match.group(0)
    content = (
        content.replace('&lt;', '<')
        .replace('&gt;', '>')
        .replace('&quot;', '"')
        .replace('&apos;', "'")
        .replace('&amp;', '&')
    )
    return f'{open_tag}<![CDATA[{content.strip()}]]>{close_tag}'


# ---------------------------------------------------------------------------
# Dimension helpers
# ---------------------------------------------------------------------------

def parse_dimensions(dimensions: str) -> List[int]:
    """Parse a dimension string like ``'5'``, ``'3,4'`` or ``'3 4'``."""
    return [int(p) for p in re.split(r'[,\s]+', dimensions.strip()) if p]


def parse_element_index(index: str) -> List[int]:
    """Parse an ``<Element Index="[1,2]">`` attribute into ``[1, 2]``."""
    return parse_dimensions(index.strip().strip('[]'))


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def normalize_path(raw_path: str) -> str:
    """Turn a configured path or ``file://`` URI into an absolute path.

    Handles surrounding quotes and whitespace, URL-encoded characters and
    ``file:///C:/...`` URIs as produced by Windows hosts.
    """
    path = raw_path.strip().strip('"').strip("'")

    if path.startswith("file:///"):
        decoded = unquote(urlparse(path).path)
        # urlparse gives /C:/path on Windows
        if len(decoded) >= 3 and decoded[0] == '/' and decoded[2] == ':':
            decoded = decoded[1:]
        path = decoded
    elif path.startswith("file://"):
        path = unquote(path[7:])

    return os.path.abspath(os.path.normpath(path))

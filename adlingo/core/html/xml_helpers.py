"""
HTML helper utilities built on lxml.

Parsing, serialization, tag-sequence scanning and readable-text extraction
shared by the extractor, the reinsertion engine, the patcher tests and the
quality gate.
"""
import html as html_lib
import re
from typing import List, Tuple

import lxml.html
from lxml import etree

from .constants import BLOCK_LEVEL_TAGS, SKIP_TAGS

_XML_DECLARATION = re.compile(r'^\s*<\?xml[^>]*\?>', re.IGNORECASE)
_OPENING_TAG = re.compile(r'<([a-zA-Z][a-zA-Z0-9:-]*)')
_HORIZONTAL_SPACE = re.compile(r'[ \t\r\f\v\xa0]+')


def tag_name(element) -> str:
    """
    Lowercased local tag name, or '' for comments and processing instructions
    """
    tag = element.tag
    if not isinstance(tag, str):
        return ''
    if '}' in tag:
        tag = tag.split('}', 1)[1]
    return tag.lower()


def parse_document(content: str) -> Tuple[etree._Element, str]:
    """
    Parse an HTML document.

    Returns:
        (root <html> element, doctype string or '')
    """
    content = _XML_DECLARATION.sub('', content, count=1)
    root = lxml.html.document_fromstring(content)
    doctype = root.getroottree().docinfo.doctype or ''
    return root, doctype


def serialize_document(root: etree._Element, doctype: str = '') -> str:
    """Serialize a parsed document back to an HTML string."""
    return lxml.html.tostring(
        root,
        encoding='unicode',
        method='html',
        doctype=doctype or None,
    )


def inner_html(element: etree._Element) -> str:
    """
    Serialize the content of an element (text and children) without the
    element's own tags.
    """
    parts = [html_lib.escape(element.text or '', quote=False)]
    for child in element:
        parts.append(lxml.html.tostring(child, encoding='unicode', method='html', with_tail=True))
    return ''.join(parts)


def has_block_descendant(element: etree._Element) -> bool:
    return any(tag_name(d) in BLOCK_LEVEL_TAGS for d in element.iterdescendants())


def extract_tag_sequence(markup: str) -> List[str]:
    """
    Ordered list of opening tag names found in markup, lowercased.

    A plain regex scan is enough here: it is used to compare two versions of
    the same markup, not to parse it.
    """
    if not markup:
        return []
    return [name.lower() for name in _OPENING_TAG.findall(markup)]


def extract_readable_text(content: str) -> str:
    """
    Visible text of a document, one line per block.

    Used as the language-scoring input and as the page context sent along
    with dispatch chunks.
    """
    if not content or not content.strip():
        return ''

    root, _ = parse_document(content)
    body = root.find('body')
    if body is None:
        body = root

    parts: List[str] = []
    _collect_text(body, parts)

    lines = []
    for line in ''.join(parts).split('\n'):
        line = _HORIZONTAL_SPACE.sub(' ', line).strip()
        if line:
            lines.append(line)
    return '\n'.join(lines)


def _collect_text(element: etree._Element, parts: List[str]) -> None:
    tag = tag_name(element)
    if tag in SKIP_TAGS:
        return

    is_break = tag in BLOCK_LEVEL_TAGS or tag == 'br'
    if is_break:
        parts.append('\n')
    if element.text:
        parts.append(element.text)
    for child in element:
        if isinstance(child.tag, str):
            _collect_text(child, parts)
        if child.tail:
            parts.append(child.tail)
    if is_break:
        parts.append('\n')

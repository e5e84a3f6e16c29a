"""
Structural extraction of HTML documents into translation units.

The extractor walks the body of a document and produces:
    - block units: inner markup of leaf blocks (block-level elements with no
      block-level descendants), inline emphasis and links included
    - text units: stray text sitting next to block children
    - attribute units: alt/title/placeholder values

Each unit's content in the working document is replaced by a placeholder
token ({{b0}}, {{t1}}, {{a2}}). A single counter is shared across kinds, so
ids never collide within one pass. Style, script, svg and noscript subtrees
are swapped for inert comments beforehand and restored verbatim later.

Extraction is deterministic: the same input always yields the same units in
the same order.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import lxml.html
from lxml import etree

from .constants import (
    BLOCK_LEVEL_TAGS,
    METADATA_FIELDS,
    MIN_TEXT_LENGTH,
    SKIP_TAGS,
    STRIP_PLACEHOLDER_FORMAT,
    STRIP_TAGS,
    TRANSLATABLE_ATTRIBUTES,
)
from .xml_helpers import (
    extract_tag_sequence,
    has_block_descendant,
    inner_html,
    parse_document,
    serialize_document,
    tag_name,
)
from adlingo.core.exceptions import ExtractionError
from adlingo.models import StrippedSubtree, TranslationUnit, UnitKind

logger = logging.getLogger(__name__)

_HAS_LETTER = re.compile(r'[^\W\d_]')


@dataclass
class ExtractionResult:
    """
    Output of one extraction pass.

    Attributes:
        skeleton: Serialized document holding placeholders instead of content
        units: Translation units in document order
        metadata: Page-level metadata (title, description, og:title, og:description)
        stripped: Stripped subtrees in document order
        doctype: Doctype of the source document
        tag_sequence: Opening tags of the parsed source, in order
    """
    skeleton: str
    units: List[TranslationUnit] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    stripped: List[StrippedSubtree] = field(default_factory=list)
    doctype: str = ''
    tag_sequence: List[str] = field(default_factory=list)

    def unit_map(self) -> Dict[str, str]:
        """id -> source value, the payload sent to the model."""
        return {unit.unit_id: unit.source_markup for unit in self.units}

    def get_unit(self, unit_id: str) -> Optional[TranslationUnit]:
        for unit in self.units:
            if unit.unit_id == unit_id:
                return unit
        return None

    def stats(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in UnitKind}
        for unit in self.units:
            counts[unit.kind.value] += 1
        counts['stripped'] = len(self.stripped)
        return counts


def read_metadata(root: etree._Element) -> Dict[str, str]:
    """Read page-level metadata fields that are present and non-empty."""
    metadata = {}
    for key, (xpath, attribute) in METADATA_FIELDS.items():
        nodes = root.xpath(xpath)
        if not nodes:
            continue
        node = nodes[0]
        value = node.text if attribute is None else node.get(attribute)
        if value and value.strip():
            metadata[key] = value.strip()
    return metadata


class StructuralExtractor:
    """
    Decomposes a document into translation units.

    One instance can be reused; every call to extract() starts a fresh pass.
    """

    def __init__(self,
                 block_tags=BLOCK_LEVEL_TAGS,
                 skip_tags=SKIP_TAGS,
                 strip_tags=STRIP_TAGS,
                 attributes=TRANSLATABLE_ATTRIBUTES):
        self.block_tags = frozenset(block_tags)
        self.skip_tags = frozenset(skip_tags)
        self.strip_tags = tuple(strip_tags)
        self.attributes = tuple(attributes)
        self._units: List[TranslationUnit] = []
        self._counter = 0

    def extract(self, content: str) -> ExtractionResult:
        """
        Run one extraction pass.

        Args:
            content: Full HTML document

        Returns:
            ExtractionResult with skeleton, units, metadata and stripped subtrees

        Raises:
            ExtractionError: If the document is empty or cannot be parsed
        """
        if not content or not content.strip():
            raise ExtractionError("Document is empty")

        try:
            root, doctype = parse_document(content)
        except (etree.ParserError, ValueError) as e:
            raise ExtractionError("Document could not be parsed", original_error=e)

        self._units = []
        self._counter = 0

        tag_sequence = extract_tag_sequence(serialize_document(root, doctype))
        metadata = read_metadata(root)
        stripped = self._strip_subtrees(root)

        body = root.find('body')
        if body is not None:
            self._visit_children(body)

        result = ExtractionResult(
            skeleton=serialize_document(root, doctype),
            units=self._units,
            metadata=metadata,
            stripped=stripped,
            doctype=doctype,
            tag_sequence=tag_sequence,
        )
        logger.debug(f"Extracted units: {result.stats()}")
        return result

    # ------------------------------------------------------------------
    # Stripping
    # ------------------------------------------------------------------

    def _strip_subtrees(self, root: etree._Element) -> List[StrippedSubtree]:
        stripped: List[StrippedSubtree] = []
        self._strip_walk(root, stripped)
        return stripped

    def _strip_walk(self, element: etree._Element, stripped: List[StrippedSubtree]) -> None:
        for child in list(element):
            if tag_name(child) in self.strip_tags:
                marker = STRIP_PLACEHOLDER_FORMAT.format(index=len(stripped))
                original = lxml.html.tostring(child, encoding='unicode', method='html', with_tail=False)
                comment = etree.Comment(marker)
                comment.tail = child.tail
                element.replace(child, comment)
                stripped.append(StrippedSubtree(placeholder=f"<!--{marker}-->", original_markup=original))
            elif isinstance(child.tag, str):
                self._strip_walk(child, stripped)

    # ------------------------------------------------------------------
    # Unit collection
    # ------------------------------------------------------------------

    def _next_id(self, kind: UnitKind) -> str:
        unit_id = f"{kind.prefix}{self._counter}"
        self._counter += 1
        return unit_id

    def _is_hidden(self, element: etree._Element) -> bool:
        return element.get('hidden') is not None

    def _visit_children(self, element: etree._Element) -> None:
        self._extract_stray_text(element, 'text')
        for child in element:
            if isinstance(child.tag, str):
                self._visit(child)
            self._extract_stray_text(child, 'tail')

    def _visit(self, element: etree._Element) -> None:
        tag = tag_name(element)
        if tag in self.skip_tags or self._is_hidden(element):
            return

        self._extract_attributes(element)

        if tag in self.block_tags and not has_block_descendant(element):
            visible = element.text_content().strip()
            if len(visible) >= MIN_TEXT_LENGTH:
                self._extract_block(element, visible)
                return

        self._visit_children(element)

    def _extract_block(self, element: etree._Element, visible_text: str) -> None:
        # Attributes of inline descendants become their own units first so the
        # block markup carries their tokens
        for descendant in element.iterdescendants():
            if isinstance(descendant.tag, str) and tag_name(descendant) not in self.skip_tags:
                self._extract_attributes(descendant)

        unit = TranslationUnit(
            unit_id=self._next_id(UnitKind.BLOCK),
            kind=UnitKind.BLOCK,
            source_markup=inner_html(element).strip(),
            source_text=' '.join(visible_text.split()),
        )
        for child in list(element):
            element.remove(child)
        element.text = unit.token
        self._units.append(unit)

    def _extract_attributes(self, element: etree._Element) -> None:
        for attribute in self.attributes:
            value = element.get(attribute)
            if not value or not _HAS_LETTER.search(value):
                continue
            unit = TranslationUnit(
                unit_id=self._next_id(UnitKind.ATTRIBUTE),
                kind=UnitKind.ATTRIBUTE,
                source_markup=value,
                source_text=value.strip(),
            )
            element.set(attribute, unit.token)
            self._units.append(unit)

    def _extract_stray_text(self, node: etree._Element, attribute: str) -> None:
        value = getattr(node, attribute)
        if not value:
            return
        stripped = value.strip()
        if len(stripped) < MIN_TEXT_LENGTH or not _HAS_LETTER.search(stripped):
            return

        leading = value[:len(value) - len(value.lstrip())]
        trailing = value[len(value.rstrip()):]
        unit = TranslationUnit(
            unit_id=self._next_id(UnitKind.TEXT),
            kind=UnitKind.TEXT,
            source_markup=stripped,
            source_text=stripped,
            leading_space=leading,
            trailing_space=trailing,
        )
        setattr(node, attribute, leading + unit.token + trailing)
        self._units.append(unit)


def extract_units(content: str) -> ExtractionResult:
    """Convenience wrapper around StructuralExtractor().extract()."""
    return StructuralExtractor().extract(content)

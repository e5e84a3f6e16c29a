"""
Reinsertion of translated unit values into an extraction skeleton.

Order of operations:
    1. placeholder substitution in one regex pass (block values verbatim,
       text and attribute values HTML-escaped; attribute tokens nested in
       block markup are resolved inside the block value)
    2. metadata fields set by direct field replacement on the reparsed document
    3. stripped subtrees restored by exact placeholder match
    4. tag sequence compared with the source; a mismatch is logged only
"""
import html as html_lib
import logging
import re
from typing import Dict, Optional

from .constants import METADATA_FIELDS
from .extractor import ExtractionResult
from .xml_helpers import extract_tag_sequence, parse_document, serialize_document
from adlingo.models import UnitKind

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{([bta]\d+)\}\}')


class ReinsertionEngine:
    """Rebuilds a complete document from a skeleton and translated values."""

    def reinsert(self, extraction: ExtractionResult,
                 translations: Dict[str, str],
                 metadata: Optional[Dict[str, str]] = None) -> str:
        """
        Assemble the translated document.

        Args:
            extraction: Result of the extraction pass
            translations: unit id -> translated value; missing ids keep their source value
            metadata: translated metadata fields (title, description, og:title, og:description)

        Returns:
            The complete translated document
        """
        values = self._resolve_values(extraction, translations)

        def substitute_inline(match: re.Match) -> str:
            unit_id = match.group(1)
            if unit_id not in values or UnitKind.from_unit_id(unit_id) == UnitKind.BLOCK:
                return match.group(0)
            return html_lib.escape(values[unit_id].strip(), quote=True)

        def substitute(match: re.Match) -> str:
            unit_id = match.group(1)
            if unit_id not in values:
                return match.group(0)
            if UnitKind.from_unit_id(unit_id) == UnitKind.BLOCK:
                return PLACEHOLDER_PATTERN.sub(substitute_inline, values[unit_id])
            return html_lib.escape(values[unit_id].strip(), quote=True)

        document = PLACEHOLDER_PATTERN.sub(substitute, extraction.skeleton)

        if metadata:
            document = apply_metadata(document, metadata)

        document = restore_stripped(document, extraction)

        actual = extract_tag_sequence(document)
        if actual != extraction.tag_sequence:
            logger.warning(
                f"Tag sequence changed during reinsertion: "
                f"{len(extraction.tag_sequence)} tags in source, {len(actual)} in output"
            )

        return document

    def _resolve_values(self, extraction: ExtractionResult,
                        translations: Dict[str, str]) -> Dict[str, str]:
        values = {}
        fallback = 0
        for unit in extraction.units:
            value = translations.get(unit.unit_id)
            if not isinstance(value, str) or not value.strip():
                value = unit.source_markup
                fallback += 1
            values[unit.unit_id] = value
        if fallback:
            logger.info(f"{fallback}/{len(extraction.units)} units kept their source value")
        return values


def restore_stripped(document: str, extraction: ExtractionResult) -> str:
    """Put stripped style/script/svg/noscript subtrees back in place."""
    for subtree in extraction.stripped:
        if subtree.placeholder in document:
            document = document.replace(subtree.placeholder, subtree.original_markup, 1)
        else:
            logger.warning(f"Stripped subtree placeholder missing: {subtree.placeholder.strip()}")
    return document


def apply_metadata(document: str, metadata: Dict[str, str]) -> str:
    """Replace title, meta description and og fields that exist in the document."""
    root, doctype = parse_document(document)
    applied = 0
    for key, value in metadata.items():
        if key not in METADATA_FIELDS or not value:
            continue
        xpath, attribute = METADATA_FIELDS[key]
        nodes = root.xpath(xpath)
        if not nodes:
            continue
        if attribute is None:
            nodes[0].text = value
        else:
            nodes[0].set(attribute, value)
        applied += 1
    logger.debug(f"Applied {applied} metadata fields")
    return serialize_document(root, doctype)


def reinsert(extraction: ExtractionResult, translations: Dict[str, str],
             metadata: Optional[Dict[str, str]] = None) -> str:
    """Convenience wrapper around ReinsertionEngine().reinsert()."""
    return ReinsertionEngine().reinsert(extraction, translations, metadata)

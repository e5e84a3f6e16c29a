"""
Markup-safe find/replace over rendered HTML.

The document is split into alternating text and markup segments. Only text
segments are ever rewritten, so the tag sequence of the document cannot
change. A correction whose text is split by inline markup
(``<strong>Svens</strong>son``) is handled by searching a virtual text made
of all visible segments and mapping each match back onto the segments it
spans.
"""
import html as html_lib
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from adlingo.models import CorrectionItem

logger = logging.getLogger(__name__)

# Comments first so a '>' inside a comment does not end the segment early
_MARKUP_SPLIT = re.compile(r'(<!--.*?-->|<[^>]*>)', re.DOTALL)
_RAW_TEXT_OPEN = re.compile(r'^<(script|style|textarea|title|noscript)\b', re.IGNORECASE)

FAILED_PREVIEW_LENGTH = 80


@dataclass
class PatchResult:
    """
    Attributes:
        html: The patched document
        applied: Number of corrections that matched at least once
        failed: Previews of corrections whose find text was not located
        replacements: Total number of replaced occurrences
    """
    html: str
    applied: int = 0
    failed: List[str] = field(default_factory=list)
    replacements: int = 0
    applied_corrections: List[CorrectionItem] = field(default_factory=list)


class _SegmentArena:
    """
    Text/markup segments of a document with visibility flags.

    Even indexes are text, odd indexes are markup. Text inside raw-text
    elements (script, style...) is markup for our purposes and never visible.
    """

    def __init__(self, document: str):
        self.segments: List[str] = _MARKUP_SPLIT.split(document)
        self.visible: List[bool] = self._compute_visibility()

    def _compute_visibility(self) -> List[bool]:
        visible = []
        raw_text_tag: Optional[str] = None
        for index, segment in enumerate(self.segments):
            if index % 2 == 1:
                visible.append(False)
                if raw_text_tag is None:
                    opening = _RAW_TEXT_OPEN.match(segment)
                    if opening and not segment.endswith('/>'):
                        raw_text_tag = opening.group(1).lower()
                elif segment.lower().startswith(f'</{raw_text_tag}'):
                    raw_text_tag = None
            else:
                visible.append(raw_text_tag is None and bool(segment))
        return visible

    def text_indexes(self) -> List[int]:
        return [i for i, flag in enumerate(self.visible) if flag]

    def render(self) -> str:
        return ''.join(self.segments)


class SafePatcher:
    """Applies CorrectionItem lists to documents, touching only visible text."""

    def apply(self, document: str, corrections: Iterable[CorrectionItem]) -> PatchResult:
        """
        Apply corrections in the order given.

        Args:
            document: Rendered HTML document
            corrections: find/replace pairs over visible (unescaped) text

        Returns:
            PatchResult with the patched document and applied/failed counts.
            Corrections that cannot be located are reported, never raised.
        """
        arena = _SegmentArena(document)
        result = PatchResult(html=document)

        for correction in corrections:
            if not correction.find:
                continue
            count = self._apply_one(arena, correction)
            if count:
                result.applied += 1
                result.replacements += count
                result.applied_corrections.append(correction)
            else:
                result.failed.append(correction.find[:FAILED_PREVIEW_LENGTH])

        result.html = arena.render()
        if result.failed:
            logger.info(
                f"Patched {result.applied} corrections ({result.replacements} occurrences), "
                f"{len(result.failed)} not found"
            )
        return result

    def _apply_one(self, arena: _SegmentArena, correction: CorrectionItem) -> int:
        replacement = html_lib.escape(correction.replace, quote=False)

        for needle in self._needles(correction.find):
            count = self._fast_path(arena, needle, replacement)
            if count:
                return count
            count = self._cross_segment(arena, needle, replacement)
            if count:
                return count
        return 0

    def _needles(self, find: str) -> Sequence[str]:
        # Visible text arrives unescaped from the model; the document holds entities
        escaped = html_lib.escape(find, quote=False)
        return (find,) if escaped == find else (find, escaped)

    def _fast_path(self, arena: _SegmentArena, needle: str, replacement: str) -> int:
        count = 0
        for index in arena.text_indexes():
            segment = arena.segments[index]
            occurrences = segment.count(needle)
            if occurrences:
                arena.segments[index] = segment.replace(needle, replacement)
                count += occurrences
        return count

    def _cross_segment(self, arena: _SegmentArena, needle: str, replacement: str) -> int:
        indexes = arena.text_indexes()
        if not indexes:
            return 0

        # Offset bookkeeping: (segment index, start offset in virtual text)
        spans: List[Tuple[int, int]] = []
        parts = []
        offset = 0
        for index in indexes:
            spans.append((index, offset))
            parts.append(arena.segments[index])
            offset += len(arena.segments[index])
        virtual = ''.join(parts)

        matches = []
        position = virtual.find(needle)
        while position != -1:
            matches.append(position)
            position = virtual.find(needle, position + len(needle))
        if not matches:
            return 0

        for start in reversed(matches):
            end = start + len(needle)
            first_pos, first_offset = self._locate(spans, start)
            last_pos, last_offset = self._locate(spans, end, closing=True)
            first_index = spans[first_pos][0]
            last_index = spans[last_pos][0]

            if first_index == last_index:
                segment = arena.segments[first_index]
                arena.segments[first_index] = segment[:first_offset] + replacement + segment[last_offset:]
                continue

            first = arena.segments[first_index]
            last = arena.segments[last_index]
            arena.segments[first_index] = first[:first_offset] + replacement
            for pos in range(first_pos + 1, last_pos):
                arena.segments[spans[pos][0]] = ''
            arena.segments[last_index] = last[last_offset:]

        return len(matches)

    @staticmethod
    def _locate(spans: List[Tuple[int, int]], position: int, closing: bool = False) -> Tuple[int, int]:
        """
        Map a virtual-text position to (span position, offset in segment).

        With closing=True a position on a segment boundary resolves to the end
        of the previous segment rather than the start of the next one.
        """
        chosen = 0
        for pos, (_, start) in enumerate(spans):
            if start < position or (start == position and not closing):
                chosen = pos
            else:
                break
        return chosen, position - spans[chosen][1]


def apply_corrections(document: str, corrections: Iterable[CorrectionItem]) -> PatchResult:
    """Convenience wrapper around SafePatcher().apply()."""
    return SafePatcher().apply(document, corrections)

"""
Batched dispatch of translation units to the language model.

Units are grouped into chunks bounded by unit count and token budget. Chunks
are sent concurrently, each as one JSON request keyed by unit id. A failed
chunk leaves its units untranslated and records the reason; dispatch only
raises when every chunk failed. Block units get a tag-sequence comparison
between source and translation, logged as a warning on mismatch.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from adlingo.config import (
    CHUNK_SIZE,
    CHUNK_TOKEN_BUDGET,
    CONTEXT_CHAR_LIMIT,
    MAX_CONCURRENT_CHUNKS,
)
from adlingo.core.exceptions import DispatchError, RetryExhaustedError
from adlingo.core.html.xml_helpers import extract_tag_sequence
from adlingo.core.llm.base import LLMProvider
from adlingo.core.retry_manager import RetryManager
from adlingo.core.token_counter import TokenCounter, get_token_counter
from adlingo.models import TranslationUnit
from adlingo.prompts import build_metadata_prompt, build_translation_prompt

logger = logging.getLogger(__name__)


@dataclass
class ChunkFailure:
    """A chunk whose request failed; its units stay untranslated."""
    index: int
    unit_ids: List[str]
    reason: str


@dataclass
class StructureWarning:
    """Tag sequence of a translated block differs from its source."""
    unit_id: str
    expected: List[str]
    actual: List[str]


@dataclass
class DispatchResult:
    """
    Merged outcome of all chunks of one dispatch.

    Attributes:
        translations: unit id -> translated value (successful units only)
        failed_units: unit id -> reason, for units left untranslated
        chunk_failures: chunks whose request failed outright
        structure_warnings: blocks whose tag sequence changed
    """
    translations: Dict[str, str] = field(default_factory=dict)
    failed_units: Dict[str, str] = field(default_factory=dict)
    chunk_failures: List[ChunkFailure] = field(default_factory=list)
    structure_warnings: List[StructureWarning] = field(default_factory=list)
    chunk_count: int = 0

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_units)

    def summary(self) -> Dict[str, Any]:
        return {
            'chunks': self.chunk_count,
            'failed_chunks': len(self.chunk_failures),
            'translated_units': len(self.translations),
            'failed_units': len(self.failed_units),
            'structure_warnings': len(self.structure_warnings),
        }


class BatchDispatcher:
    """Sends translation units to the model in concurrent, size-bounded chunks."""

    def __init__(self,
                 provider: LLMProvider,
                 retry_manager: Optional[RetryManager] = None,
                 chunk_size: int = CHUNK_SIZE,
                 token_budget: int = CHUNK_TOKEN_BUDGET,
                 max_concurrent_chunks: int = MAX_CONCURRENT_CHUNKS,
                 context_char_limit: int = CONTEXT_CHAR_LIMIT,
                 token_counter: Optional[TokenCounter] = None,
                 do_not_translate: Optional[List[str]] = None):
        self.provider = provider
        self.retry_manager = retry_manager or RetryManager()
        self.chunk_size = max(1, chunk_size)
        self.token_budget = token_budget
        self.max_concurrent_chunks = max(1, max_concurrent_chunks)
        self.context_char_limit = context_char_limit
        self.token_counter = token_counter or get_token_counter()
        self.do_not_translate = do_not_translate

    def build_chunks(self, units: List[TranslationUnit]) -> List[List[TranslationUnit]]:
        """
        Split units into chunks of at most chunk_size units and roughly
        token_budget source tokens. A single oversized unit gets its own chunk.
        """
        chunks: List[List[TranslationUnit]] = []
        current: List[TranslationUnit] = []
        current_tokens = 0

        for unit in units:
            tokens = self.token_counter.count(unit.source_markup)
            over_budget = self.token_budget and current_tokens + tokens > self.token_budget
            if current and (len(current) >= self.chunk_size or over_budget):
                chunks.append(current)
                current = []
                current_tokens = 0
            current.append(unit)
            current_tokens += tokens

        if current:
            chunks.append(current)
        return chunks

    async def dispatch(self,
                       units: List[TranslationUnit],
                       language: str,
                       context: str = "",
                       feedback: str = "") -> DispatchResult:
        """
        Translate units into the target language.

        Args:
            units: Units from one extraction pass
            language: Target language code
            context: Readable text of the whole document (truncated before sending)
            feedback: Issues from the previous review round, if any

        Returns:
            DispatchResult with merged translations and per-unit failures

        Raises:
            DispatchError: If every chunk failed
        """
        result = DispatchResult()
        if not units:
            return result

        chunks = self.build_chunks(units)
        result.chunk_count = len(chunks)
        context = (context or "")[:self.context_char_limit]
        semaphore = asyncio.Semaphore(self.max_concurrent_chunks)

        logger.info(f"Dispatching {len(units)} units in {len(chunks)} chunk(s) to {language}")

        outcomes = await asyncio.gather(*[
            self._run_chunk(index, chunk, language, context, feedback, semaphore)
            for index, chunk in enumerate(chunks)
        ])

        for index, chunk, payload, error in outcomes:
            if error is not None:
                reason = str(error)
                result.chunk_failures.append(ChunkFailure(index, [u.unit_id for u in chunk], reason))
                for unit in chunk:
                    result.failed_units[unit.unit_id] = reason
                logger.warning(f"Chunk {index + 1}/{len(chunks)} failed: {reason}")
                continue
            self._merge_chunk(chunk, payload, result)

        if len(result.chunk_failures) == len(chunks):
            raise DispatchError(
                f"All {len(chunks)} chunk(s) failed",
                failures={f.index: f.reason for f in result.chunk_failures},
                context={'language': language, 'units': len(units)}
            )

        logger.info(f"Dispatch finished: {result.summary()}")
        return result

    async def _run_chunk(self, index: int, chunk: List[TranslationUnit], language: str,
                         context: str, feedback: str, semaphore: asyncio.Semaphore):
        prompt = build_translation_prompt(
            {unit.unit_id: unit.source_markup for unit in chunk},
            language,
            context=context,
            feedback=feedback,
            do_not_translate=self.do_not_translate,
        )
        async with semaphore:
            try:
                payload = await self.retry_manager.execute_with_retry(
                    self.provider.generate_json,
                    prompt.user,
                    system_prompt=prompt.system,
                    operation_id=f"dispatch_{language}_chunk_{index}",
                )
            except RetryExhaustedError as e:
                return index, chunk, None, e.original_error or e
            except Exception as e:
                # Isolated per chunk; the caller decides whether the whole dispatch failed
                return index, chunk, None, e
        return index, chunk, payload, None

    def _merge_chunk(self, chunk: List[TranslationUnit], payload: Dict[str, Any],
                     result: DispatchResult) -> None:
        for unit in chunk:
            value = payload.get(unit.unit_id)
            if not isinstance(value, str) or not value.strip():
                result.failed_units[unit.unit_id] = "missing from model response"
                continue

            if unit.carries_markup:
                expected = extract_tag_sequence(unit.source_markup)
                actual = extract_tag_sequence(value)
                if expected != actual:
                    result.structure_warnings.append(StructureWarning(unit.unit_id, expected, actual))
                    logger.warning(
                        f"Tag mismatch in {unit.unit_id}: expected {expected}, got {actual}"
                    )

            result.translations[unit.unit_id] = value

    async def translate_metadata(self, metadata: Dict[str, str], language: str) -> Dict[str, str]:
        """
        Translate page metadata in a separate request.

        Failures are logged and yield an empty dict: the page keeps its
        source metadata.
        """
        if not metadata:
            return {}

        prompt = build_metadata_prompt(metadata, language, do_not_translate=self.do_not_translate)
        try:
            payload = await self.retry_manager.execute_with_retry(
                self.provider.generate_json,
                prompt.user,
                system_prompt=prompt.system,
                operation_id=f"metadata_{language}",
            )
        except Exception as e:
            logger.warning(f"Metadata translation failed, keeping source values: {e}")
            return {}

        return {
            key: value.strip()
            for key, value in payload.items()
            if key in metadata and isinstance(value, str) and value.strip()
        }

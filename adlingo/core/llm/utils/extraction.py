"""
JSON extraction from LLM responses.

Models asked for a JSON object usually return exactly that, but some wrap
it in a markdown code fence, prefix it with a sentence, or emit a
<think>...</think> reasoning block first. The extractor tolerates all three.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class JsonExtractor:
    """
    Extracts a JSON object from an LLM response.

    Example:
        >>> extractor = JsonExtractor()
        >>> extractor.extract('<think>hmm</think>```json\\n{"b0": "Hej"}\\n```')
        {'b0': 'Hej'}
    """

    _THINK_PATTERN = re.compile(r'<think>.*?</think>', re.DOTALL | re.IGNORECASE)
    _FENCE_PATTERN = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL | re.IGNORECASE)

    def extract(self, response: str) -> Optional[Dict[str, Any]]:
        """
        Parse the first JSON object found in the response.

        Args:
            response: Raw LLM response text

        Returns:
            The parsed object, or None if no JSON object could be parsed
        """
        if not response:
            return None

        text = self._remove_think_blocks(response).strip()

        for candidate in self._candidates(text):
            try:
                parsed = json.loads(candidate)
            except (json.JSONDecodeError, ValueError):
                continue
            if isinstance(parsed, dict):
                return parsed

        logger.debug(f"No JSON object found in response (first 200 chars): {text[:200]}")
        return None

    def _candidates(self, text: str):
        yield text

        fence = self._FENCE_PATTERN.search(text)
        if fence:
            yield fence.group(1).strip()

        start = text.find('{')
        end = text.rfind('}')
        if start != -1 and end > start:
            yield text[start:end + 1]

    def _remove_think_blocks(self, response: str) -> str:
        """
        Remove all <think>...</think> blocks from response.

        An orphan closing tag (opening tag truncated by the server) drops
        everything before it.
        """
        cleaned = self._THINK_PATTERN.sub('', response)
        return re.sub(r'^.*?</think>\s*', '', cleaned, flags=re.DOTALL | re.IGNORECASE)

"""
Token counting for dispatch chunk budgets.

Uses tiktoken's cl100k_base encoding. The encoding file is fetched on first
use; when that fails (offline host, blocked download) counting falls back to
a character-based estimate so dispatch keeps working.
"""
import logging
from typing import Optional

import tiktoken

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4.0


class TokenCounter:
    """Counts tokens with tiktoken, estimating from characters as a fallback."""

    def __init__(self, encoding_name: str = "cl100k_base"):
        self.encoding_name = encoding_name
        self._encoder = None
        self._unavailable = False

    def _get_encoder(self) -> Optional["tiktoken.Encoding"]:
        if self._encoder is None and not self._unavailable:
            try:
                self._encoder = tiktoken.get_encoding(self.encoding_name)
            except Exception as e:
                logger.warning(f"tiktoken encoding unavailable, estimating from characters: {e}")
                self._unavailable = True
        return self._encoder

    @property
    def method(self) -> str:
        return "tiktoken" if self._get_encoder() is not None else "character_based"

    def count(self, text: str) -> int:
        if not text:
            return 0
        encoder = self._get_encoder()
        if encoder is not None:
            return len(encoder.encode(text, disallowed_special=()))
        return int(len(text) / CHARS_PER_TOKEN) + 1


_default_counter: Optional[TokenCounter] = None


def get_token_counter() -> TokenCounter:
    """Shared counter so the encoding is loaded once per process."""
    global _default_counter
    if _default_counter is None:
        _default_counter = TokenCounter()
    return _default_counter

"""
LLM provider layer.

    from adlingo.core.llm import create_provider

    provider = create_provider()
    data = await provider.generate_json(prompt, system_prompt=system)
"""

from typing import Optional

from .base import LLMProvider, LLMResponse
from .providers.openai import OpenAIProvider
from adlingo.config import OPENAI_API_ENDPOINT, OPENAI_API_KEY, OPENAI_MODEL


def create_provider(api_key: Optional[str] = None, model: Optional[str] = None,
                    api_endpoint: Optional[str] = None) -> LLMProvider:
    """Build the configured provider."""
    return OpenAIProvider(
        api_key=api_key or OPENAI_API_KEY,
        model=model or OPENAI_MODEL,
        api_endpoint=api_endpoint or OPENAI_API_ENDPOINT,
    )


__all__ = ['LLMProvider', 'LLMResponse', 'OpenAIProvider', 'create_provider']

"""
LLM Provider Implementations

Providers:
    - openai: OpenAI chat completions (text, JSON mode and vision)
"""

from .openai import OpenAIProvider

__all__ = ['OpenAIProvider']

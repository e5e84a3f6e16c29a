"""
LLM utility modules

Utilities for handling LLM responses.
"""

from .extraction import JsonExtractor

__all__ = ['JsonExtractor']

"""
Base classes and data structures for LLM providers.

This module defines the abstract base class that all LLM providers must implement,
as well as common data structures like LLMResponse.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import httpx

from adlingo.config import REQUEST_TIMEOUT
from adlingo.core.exceptions import LLMResponseError
from adlingo.core.llm.utils.extraction import JsonExtractor


@dataclass
class LLMResponse:
    """Response from LLM with token usage information"""
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""
    was_truncated: bool = False  # finish_reason == "length"


class LLMProvider(ABC):
    """Abstract base class for LLM providers"""

    def __init__(self, model: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the LLM provider.

        Args:
            model: Model name/identifier
            transport: Optional httpx transport (used by tests to mock the API)
        """
        self.model = model
        self._transport = transport
        self._extractor = JsonExtractor()
        self._client = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client with connection pooling"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=20),
                timeout=httpx.Timeout(REQUEST_TIMEOUT),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def generate(self, prompt: str,
                       system_prompt: Optional[str] = None,
                       images: Optional[List[str]] = None,
                       json_mode: bool = False,
                       temperature: Optional[float] = None,
                       max_tokens: Optional[int] = None,
                       timeout: int = REQUEST_TIMEOUT) -> LLMResponse:
        """
        Generate a completion.

        Args:
            prompt: The user prompt (content to process)
            system_prompt: Optional system prompt (role/instructions)
            images: Optional image URLs sent alongside the prompt (vision models)
            json_mode: Ask the model for a single JSON object
            temperature: Sampling temperature, provider default when None
            max_tokens: Completion token cap, provider default when None
            timeout: Request timeout in seconds

        Returns:
            LLMResponse with content and token usage info

        Raises:
            LLMError subclasses on transport, HTTP or response failures
        """
        pass

    async def generate_json(self, prompt: str, **kwargs) -> Dict[str, Any]:
        """Request a JSON object and parse it.

        Raises:
            LLMResponseError: If the response holds no JSON object
        """
        response = await self.generate(prompt, json_mode=True, **kwargs)
        parsed = self._extractor.extract(response.content)
        if parsed is None:
            raise LLMResponseError(
                "Model response is not a JSON object",
                content_preview=response.content,
                context={'model': self.model, 'truncated': response.was_truncated}
            )
        return parsed

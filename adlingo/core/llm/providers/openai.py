"""
OpenAI provider implementation.

Talks to the chat completions endpoint (OpenAI or any compatible server).
JSON mode sets ``response_format`` to ``json_object``; image URLs are sent as
``image_url`` content parts so the same provider serves the vision scoring
calls.
"""

from typing import Any, Dict, List, Optional
import json
import logging
import httpx

from ..base import LLMProvider, LLMResponse
from adlingo.config import (
    OPENAI_API_ENDPOINT,
    OPENAI_MODEL,
    REQUEST_TIMEOUT,
    TRANSLATION_TEMPERATURE,
)
from adlingo.core.exceptions import (
    ConfigurationError,
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMRequestError,
    LLMResponseError,
    LLMServerError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get('retry-after')
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider"""

    def __init__(self, api_key: str, model: str = OPENAI_MODEL,
                 api_endpoint: str = OPENAI_API_ENDPOINT,
                 temperature: float = TRANSLATION_TEMPERATURE,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        super().__init__(model, transport=transport)
        self.api_key = api_key
        self.api_endpoint = api_endpoint
        self.temperature = temperature

    def _build_messages(self, prompt: str, system_prompt: Optional[str],
                        images: Optional[List[str]]) -> List[Dict[str, Any]]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        if images:
            content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
            for url in images:
                content.append({"type": "image_url", "image_url": {"url": url, "detail": "high"}})
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": prompt})
        return messages

    def _raise_for_status(self, response: httpx.Response):
        status = response.status_code
        if status < 400:
            return

        body = response.text[:500]
        context = {'status_code': status, 'model': self.model}
        if status in (401, 403):
            raise LLMAuthenticationError(f"OpenAI rejected credentials: {body}", context)
        if status == 429:
            raise LLMRateLimitError(f"OpenAI rate limit: {body}", retry_after=_retry_after(response),
                                    context=context)
        if status >= 500:
            raise LLMServerError(f"OpenAI server error: {body}", status_code=status)
        if status == 408:
            raise LLMTimeoutError(f"OpenAI request timeout: {body}", context)
        raise LLMRequestError(f"OpenAI request rejected: {body}", status_code=status)

    async def generate(self, prompt: str,
                       system_prompt: Optional[str] = None,
                       images: Optional[List[str]] = None,
                       json_mode: bool = False,
                       temperature: Optional[float] = None,
                       max_tokens: Optional[int] = None,
                       timeout: int = REQUEST_TIMEOUT) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt (role/instructions)
            images: Optional image URLs for vision requests
            json_mode: Request a JSON object response
            temperature: Sampling temperature (default from config)
            max_tokens: Optional completion token cap
            timeout: Request timeout in seconds

        Returns:
            LLMResponse with content and token usage info
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self._build_messages(prompt, system_prompt, images),
            "temperature": self.temperature if temperature is None else temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        if max_tokens:
            payload["max_completion_tokens"] = max_tokens

        client = await self._get_client()
        try:
            response = await client.post(
                self.api_endpoint,
                json=payload,
                headers=headers,
                timeout=timeout
            )
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"OpenAI request timed out: {e}", {'model': self.model}) from e
        except httpx.TransportError as e:
            raise LLMConnectionError(f"OpenAI connection failed: {e}", {'model': self.model}) from e

        self._raise_for_status(response)

        try:
            response_json = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise LLMResponseError("OpenAI returned a non-JSON body", content_preview=response.text) from e

        choices = response_json.get("choices") or [{}]
        choice = choices[0]
        content = (choice.get("message") or {}).get("content") or ""
        if not content:
            raise LLMResponseError("OpenAI returned an empty completion", context={'model': self.model})

        usage = response_json.get("usage") or {}
        result = LLMResponse(
            content=content,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            model=response_json.get("model", self.model),
            was_truncated=choice.get("finish_reason") == "length",
        )
        logger.debug(
            f"OpenAI completion: {result.prompt_tokens} prompt + "
            f"{result.completion_tokens} completion tokens"
        )
        return result

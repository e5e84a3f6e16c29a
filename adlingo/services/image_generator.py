"""
Image generation service client (Kie jobs API).

A generation is a createTask call followed by polling recordInfo with
exponential backoff (2s doubling up to 10s) until the task succeeds, fails,
or the poll window runs out.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from adlingo.config import (
    KIE_API_ENDPOINT,
    KIE_API_KEY,
    KIE_MODEL,
    KIE_POLL_TIMEOUT,
    KIE_RESOLUTION,
    REQUEST_TIMEOUT,
)
from adlingo.core.exceptions import (
    ConfigurationError,
    GenerationError,
    GenerationTimeoutError,
)
from adlingo.core.retry_manager import RetryManager

logger = logging.getLogger(__name__)

POLL_INITIAL_SECONDS = 2.0
POLL_MAX_SECONDS = 10.0


@dataclass
class GenerationResult:
    task_id: str
    urls: List[str] = field(default_factory=list)
    cost_time_ms: Optional[int] = None


def _check_response(response: httpx.Response, action: str) -> Dict[str, Any]:
    status = response.status_code
    if status >= 400:
        recoverable = status == 429 or status >= 500
        raise GenerationError(
            f"Kie {action} failed ({status}): {response.text[:300]}",
            context={'status_code': status},
            recoverable=recoverable,
        )
    try:
        data = response.json()
    except ValueError as e:
        raise GenerationError(f"Kie {action} returned a non-JSON body") from e

    code = data.get('code')
    if code is not None and code != 200:
        recoverable = code == 429 or (isinstance(code, int) and code >= 500)
        raise GenerationError(
            f"Kie {action} error: {data.get('msg', 'unknown error')}",
            context={'code': code},
            recoverable=recoverable,
        )
    return data


class KieImageGenerator:
    """Client for the artifact generation service."""

    def __init__(self,
                 api_key: str = KIE_API_KEY,
                 base_url: str = KIE_API_ENDPOINT,
                 model: str = KIE_MODEL,
                 resolution: str = KIE_RESOLUTION,
                 retry_manager: Optional[RetryManager] = None,
                 poll_initial: float = POLL_INITIAL_SECONDS,
                 poll_max: float = POLL_MAX_SECONDS,
                 poll_timeout: float = KIE_POLL_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not api_key:
            raise ConfigurationError("KIE_API_KEY is not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.resolution = resolution
        self.retry_manager = retry_manager or RetryManager()
        self.poll_initial = poll_initial
        self.poll_max = poll_max
        self.poll_timeout = poll_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(REQUEST_TIMEOUT),
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_task(self, prompt: str, image_urls: List[str], aspect_ratio: str) -> str:
        """Submit a generation task and return its task id."""
        payload = {
            "model": self.model,
            "input": {
                "prompt": prompt,
                "image_input": image_urls,
                "aspect_ratio": aspect_ratio,
                "resolution": self.resolution,
                "output_format": "png",
            },
        }

        async def _submit() -> str:
            client = await self._get_client()
            try:
                response = await client.post(f"{self.base_url}/jobs/createTask", json=payload)
            except httpx.TransportError as e:
                raise GenerationError(f"Kie createTask connection failed: {e}", recoverable=True) from e
            data = _check_response(response, "createTask")
            task_id = (data.get('data') or {}).get('taskId')
            if not task_id:
                raise GenerationError("Kie createTask returned no taskId")
            return task_id

        return await self.retry_manager.execute_with_retry(_submit, operation_id="kie_create_task")

    async def _fetch_status(self, task_id: str) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}/jobs/recordInfo", params={"taskId": task_id})
        except httpx.TransportError as e:
            raise GenerationError(f"Kie poll connection failed: {e}", recoverable=True) from e
        return _check_response(response, "recordInfo").get('data') or {}

    async def poll_result(self, task_id: str) -> GenerationResult:
        """Poll until the task finishes."""
        started = time.monotonic()
        interval = self.poll_initial

        while time.monotonic() - started < self.poll_timeout:
            status = await self.retry_manager.execute_with_retry(
                self._fetch_status, task_id, operation_id=f"kie_poll_{task_id}"
            )
            state = status.get('state')

            if state == 'success' and status.get('resultJson'):
                try:
                    result = json.loads(status['resultJson'])
                except (TypeError, ValueError) as e:
                    raise GenerationError(f"Kie task {task_id} returned unreadable resultJson") from e
                urls = [u for u in result.get('resultUrls') or [] if isinstance(u, str)]
                if not urls:
                    raise GenerationError(f"Kie task {task_id} finished without result URLs")
                return GenerationResult(task_id=task_id, urls=urls, cost_time_ms=status.get('costTime'))

            if state == 'fail':
                raise GenerationError(
                    f"Kie task failed: {status.get('failMsg') or 'Unknown error'}",
                    context={'task_id': task_id, 'fail_code': status.get('failCode')},
                )

            await asyncio.sleep(interval)
            interval = min(interval * 2, self.poll_max)

        raise GenerationTimeoutError(
            "Kie task did not finish in time",
            task_id=task_id,
            waited=time.monotonic() - started,
        )

    async def generate(self, prompt: str, reference_image: str, aspect_ratio: str) -> GenerationResult:
        """
        Generate an image from a prompt and a reference image.

        Returns:
            GenerationResult with the generated image URL(s)
        """
        task_id = await self.create_task(prompt, [reference_image], aspect_ratio)
        logger.info(f"Kie task {task_id} created ({aspect_ratio})")
        result = await self.poll_result(task_id)
        logger.info(f"Kie task {task_id} finished with {len(result.urls)} image(s)")
        return result

    async def download(self, url: str) -> bytes:
        """Fetch a generated image."""
        async def _get() -> bytes:
            # Result URLs are public; the API key is not sent to them
            async with httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT),
                                         transport=self._transport,
                                         follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content

        return await self.retry_manager.execute_with_retry(_get, operation_id="download_generated_image")

"""
Batch completion notifications.

Notifiers are triggered once a batch finishes. They receive the batch summary
(job id, job status, final artifact and score per task) and must not affect
task state: the worker queue records their failures instead of raising.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from adlingo.config import (
    EXPORT_WEBHOOK_URL,
    NOTIFY_EMAIL,
    NOTIFY_WEBHOOK_URL,
    REQUEST_TIMEOUT,
)
from adlingo.core.exceptions import TranslationError
from adlingo.core.retry_manager import RetryManager

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Downstream collaborator triggered after a batch completes."""

    name: str = "notifier"

    @abstractmethod
    async def notify(self, summary: Dict[str, Any]) -> None:
        pass


class WebhookNotifier(Notifier):
    """POSTs the batch summary as JSON to a webhook URL."""

    def __init__(self,
                 name: str,
                 url: str,
                 extra: Optional[Dict[str, Any]] = None,
                 retry_manager: Optional[RetryManager] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.name = name
        self.url = url
        self.extra = extra or {}
        self.retry_manager = retry_manager or RetryManager()
        self._transport = transport

    async def _post(self, payload: Dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT),
                                     transport=self._transport) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()

    async def notify(self, summary: Dict[str, Any]) -> None:
        payload = {"event": self.name, **self.extra, **summary}
        await self.retry_manager.execute_with_retry(
            self._post, payload, operation_id=f"notify_{self.name}"
        )
        logger.info(f"Notification '{self.name}' sent for job {summary.get('job_id')}")


def build_notifiers(retry_manager: Optional[RetryManager] = None) -> List[Notifier]:
    """Notifiers configured through the environment (export and email webhooks)."""
    notifiers: List[Notifier] = []
    if EXPORT_WEBHOOK_URL:
        notifiers.append(WebhookNotifier("export", EXPORT_WEBHOOK_URL, retry_manager=retry_manager))
    if NOTIFY_WEBHOOK_URL:
        if not NOTIFY_EMAIL:
            logger.warning("NOTIFY_WEBHOOK_URL is set without NOTIFY_EMAIL, email notifications disabled")
        else:
            notifiers.append(WebhookNotifier(
                "email", NOTIFY_WEBHOOK_URL,
                extra={"email": NOTIFY_EMAIL},
                retry_manager=retry_manager,
            ))
    return notifiers


async def run_notifiers(notifiers: List[Notifier], summary: Dict[str, Any]) -> Dict[str, str]:
    """
    Run every notifier, collecting failures.

    Returns:
        notifier name -> error message, for failed notifiers only
    """
    errors: Dict[str, str] = {}
    for notifier in notifiers:
        try:
            await notifier.notify(summary)
        except (TranslationError, httpx.HTTPError) as e:
            logger.warning(f"Notification '{notifier.name}' failed: {e}")
            errors[notifier.name] = str(e)
        except Exception as e:
            # Notifiers never affect task or job state
            logger.exception(f"Notification '{notifier.name}' crashed: {e}")
            errors[notifier.name] = f"{type(e).__name__}: {e}"
    return errors

"""Notification sinks. Delivery transport (push, email) lives behind the service."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from rehab_progress.integrations.case_store import RETRYABLE_ERRORS, BackendUnavailable
from rehab_progress.plans.errors import CollaboratorError

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Accepts notifications addressed to a worker or clinician."""

    @abstractmethod
    async def send(
        self,
        recipient_id: str,
        type: str,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        ...

    async def close(self) -> None:
        """Release any held connections."""


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log instead of delivering them."""

    async def send(self, recipient_id, type, title, message, metadata=None) -> None:
        logger.info("Notification %s -> %s: %s", type, recipient_id, title)


class HttpNotificationSink(NotificationSink):
    """POSTs notifications to ``{base_url}/notifications``."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def send(self, recipient_id, type, title, message, metadata=None) -> None:
        payload = {
            "recipient_id": recipient_id,
            "type": type,
            "title": title,
            "message": message,
            "metadata": metadata or {},
        }
        try:
            await self._post(payload)
        except (httpx.HTTPError, BackendUnavailable) as e:
            logger.error(f"Notification {type} to {recipient_id} failed: {e}")
            raise CollaboratorError(f"Notification delivery failed: {e}", type=type) from e

    async def close(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> None:
        response = await self._client.post("/notifications", json=payload)
        if response.status_code >= 500:
            raise BackendUnavailable(response)
        response.raise_for_status()


def build_notification_sink(settings) -> NotificationSink:
    if settings.has_notification_service:
        return HttpNotificationSink(
            settings.notification_url,
            api_key=settings.backend_api_key,
            timeout=settings.http_timeout,
        )
    return LoggingNotificationSink()

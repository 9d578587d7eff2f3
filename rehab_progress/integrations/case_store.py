"""Case store clients: the only reader and writer of a case's status."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from rehab_progress.plans.errors import CollaboratorError

logger = logging.getLogger(__name__)


class BackendUnavailable(Exception):
    """5xx answer from a collaborator; retried like a transport error."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"{response.request.method} {response.request.url} -> {response.status_code}")
        self.response = response


RETRYABLE_ERRORS = (httpx.TransportError, BackendUnavailable)


class CaseStore(ABC):
    """Interface to the external case store."""

    @abstractmethod
    async def get_case_status(self, case_id: str) -> Optional[str]:
        """Return the case's status, or None when the case is unknown."""
        ...

    @abstractmethod
    async def set_case_status(self, case_id: str, status: str) -> None:
        ...

    async def close(self) -> None:
        """Release any held connections."""


class InMemoryCaseStore(CaseStore):
    """Case statuses kept in a dict. Used when no case store URL is configured."""

    def __init__(self, statuses: Optional[dict[str, str]] = None) -> None:
        self.statuses: dict[str, str] = dict(statuses or {})

    async def get_case_status(self, case_id: str) -> Optional[str]:
        return self.statuses.get(case_id)

    async def set_case_status(self, case_id: str, status: str) -> None:
        self.statuses[case_id] = status


class HttpCaseStore(CaseStore):
    """REST client for the case store.

    ``GET /cases/{id}`` returns ``{"status": ...}``; ``PATCH /cases/{id}``
    accepts ``{"status": ...}``. Transport errors and 5xx answers are retried
    three times with exponential backoff before ``CollaboratorError`` is raised.
    """

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

    async def get_case_status(self, case_id: str) -> Optional[str]:
        response = await self._call("GET", f"/cases/{case_id}")
        if response.status_code == 404:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise CollaboratorError(f"Case store returned an unreadable body for case {case_id}", case_id=case_id) from e
        if not isinstance(body, dict):
            raise CollaboratorError(
                f"Case store returned {type(body).__name__} instead of an object for case {case_id}",
                case_id=case_id,
            )
        return body.get("status")

    async def set_case_status(self, case_id: str, status: str) -> None:
        response = await self._call("PATCH", f"/cases/{case_id}", json={"status": status})
        if response.status_code == 404:
            raise CollaboratorError(f"Case {case_id} not found in case store", case_id=case_id)
        logger.info("Case %s status set to %s", case_id, status)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._send(method, url, **kwargs)
        except (httpx.HTTPError, BackendUnavailable) as e:
            logger.error(f"Case store {method} {url} failed: {e}")
            raise CollaboratorError(f"Case store request failed: {e}") from e

    @retry(
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code >= 500:
            raise BackendUnavailable(response)
        if response.status_code >= 400 and response.status_code != 404:
            response.raise_for_status()
        return response


def build_case_store(settings) -> CaseStore:
    """Pick the case store implementation for the configured settings."""
    if settings.has_case_store:
        return HttpCaseStore(
            settings.case_store_url,
            api_key=settings.backend_api_key,
            timeout=settings.http_timeout,
        )
    logger.info("No case store URL configured; using in-process case store")
    return InMemoryCaseStore()

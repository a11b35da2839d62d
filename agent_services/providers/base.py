"""
Shared plumbing for provider clients.

Every client talks to its upstream through httpx and surfaces failures as a
single exception type, ProviderError, so the orchestrator never has to know
which provider (or which transport error) it is dealing with.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ProviderError(Exception):
    """An upstream call failed (HTTP error status, bad payload, or network error)."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ProviderClient:
    """Base class for a credentialed JSON-over-HTTP provider."""

    name = "provider"
    base_url = ""

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or None
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderError(self.name, "credential not configured")

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request and return the raw response; only transport errors raise."""
        self._require_key()
        try:
            async with self._client() as client:
                return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderError(self.name, f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"{method} {path} failed: {exc}") from exc

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        """Send a request, raise ProviderError on any non-2xx, return the JSON body."""
        res = await self._send(method, path, **kwargs)
        if res.status_code >= 400:
            raise ProviderError(
                self.name,
                f"{method} {path} returned {res.status_code}: {res.text[:200]}",
                status_code=res.status_code,
            )
        if not res.content:
            return {}
        try:
            return res.json()
        except ValueError as exc:
            raise ProviderError(self.name, f"{method} {path} returned invalid JSON", res.status_code) from exc

    async def _delete(self, path: str, label: str) -> bool:
        """Best-effort delete. A 404 counts as already gone."""
        if not self.configured or not label:
            return False
        try:
            res = await self._send("DELETE", path)
        except ProviderError as exc:
            logger.warning("[%s] Failed to delete %s: %s", self.name, label, exc.message)
            return False
        if res.is_success or res.status_code == 404:
            logger.info("[%s] Deleted %s", self.name, label)
            return True
        logger.warning("[%s] Failed to delete %s: %s %s", self.name, label, res.status_code, res.text[:200])
        return False

"""AgentMail mailbox provider: one inbox per instance."""

import asyncio
import logging
from typing import Optional

import httpx

from agent_services.providers.base import ProviderClient, ProviderError, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

CREATE_ATTEMPTS = 3
LIST_PAGE_SIZE = 150


class AgentMailClient(ProviderClient):
    name = "agentmail"
    base_url = "https://api.agentmail.to/v0"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        domain: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, timeout=timeout, transport=transport)
        self.domain = domain

    async def create_inbox(self, client_id: str, display_name: str = "Convos Agent") -> str:
        """Create an inbox whose username and client_id are `client_id`.

        Retries up to 3 times on 5xx/429. Returns the inbox id.
        """
        payload = {"username": client_id, "display_name": display_name, "client_id": client_id}
        if self.domain:
            payload["domain"] = self.domain

        for attempt in range(1, CREATE_ATTEMPTS + 1):
            res = await self._send("POST", "/inboxes", json=payload)
            inbox_id = None
            if res.is_success:
                try:
                    inbox_id = res.json().get("inbox_id")
                except ValueError:
                    inbox_id = None
            if inbox_id:
                logger.info("[agentmail] Created inbox %s for %s", inbox_id, client_id)
                return inbox_id

            retryable = res.status_code >= 500 or res.status_code == 429
            if retryable and attempt < CREATE_ATTEMPTS:
                logger.warning("[agentmail] Create inbox attempt %d/%d failed (%s), retrying in %ds...",
                               attempt, CREATE_ATTEMPTS, res.status_code, attempt * 2)
                await asyncio.sleep(attempt * 2)
                continue

            raise ProviderError(
                self.name,
                f"inbox creation failed: {res.status_code} {res.text[:200]}",
                status_code=res.status_code,
            )

        raise ProviderError(self.name, "inbox creation failed: max retries exceeded")

    async def delete_inbox(self, inbox_id: str) -> bool:
        """Delete an inbox. Best-effort."""
        return await self._delete(f"/inboxes/{inbox_id}", f"inbox {inbox_id}")

    async def list_inboxes(self) -> list[dict]:
        """Every inbox on the account, following page tokens."""
        inboxes: list[dict] = []
        page_token = None
        while True:
            params = {"limit": LIST_PAGE_SIZE}
            if page_token:
                params["page_token"] = page_token
            body = await self._request("GET", "/inboxes", params=params)
            # The list endpoint has returned both shapes over time
            page = body.get("inboxes") or body.get("data") or []
            inboxes.extend(page)
            page_token = body.get("next_page_token")
            if not page_token or not page:
                break
        return inboxes

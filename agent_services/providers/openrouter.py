"""OpenRouter key issuance: one spend-limited API key per instance."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from agent_services.providers.base import ProviderClient, ProviderError, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class IssuedKey:
    key: str    # Secret handed to the instance
    hash: str   # Stable identifier used for deletion


class OpenRouterClient(ProviderClient):
    name = "openrouter"
    base_url = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        key_limit: int = 20,
        limit_reset: str = "monthly",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, timeout=timeout, transport=transport)
        self.key_limit = key_limit
        self.limit_reset = limit_reset

    async def create_key(self, name: str, limit: Optional[float] = None) -> IssuedKey:
        """Create a scoped API key via the management API."""
        key_limit = self.key_limit if limit is None else limit
        body = await self._request(
            "POST", "/keys",
            json={"name": name, "limit": key_limit, "limit_reset": self.limit_reset},
        )
        key = body.get("key")
        key_hash = (body.get("data") or {}).get("hash")
        if not key or not key_hash:
            raise ProviderError(self.name, f"key creation for {name} returned no key")
        logger.info("[openrouter] Created key for %s (hash=%s)", name, key_hash)
        return IssuedKey(key=key, hash=key_hash)

    async def delete_key(self, key_hash: str) -> bool:
        """Delete a key by hash. Best-effort."""
        return await self._delete(f"/keys/{key_hash}", f"key (hash={key_hash})")

    async def update_key_limit(self, key_hash: str, limit: float) -> dict:
        """Set a new spend limit on a key. Returns the updated key."""
        body = await self._request("PATCH", f"/keys/{key_hash}", json={"limit": limit})
        logger.info("[openrouter] Set limit %s on key %s", limit, key_hash)
        return body.get("data") or {}

    async def get_credits(self) -> dict:
        """Account-wide credits purchased and used, in USD."""
        body = await self._request("GET", "/credits")
        data = body.get("data") or {}
        return {
            "totalCredits": data.get("total_credits") or 0,
            "totalUsage": data.get("total_usage") or 0,
        }

    async def list_keys(self) -> list[dict]:
        """Every key on the account, following offset pagination."""
        keys: list[dict] = []
        seen: set[str] = set()
        offset = 0
        while True:
            body = await self._request("GET", "/keys", params={"offset": offset})
            page = body.get("data") or []
            fresh = [k for k in page if k.get("hash") not in seen]
            if not fresh:
                break
            for k in fresh:
                seen.add(k.get("hash"))
            keys.extend(fresh)
            offset += len(page)
        return keys

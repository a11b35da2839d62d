"""Readiness probe against a running instance."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


async def probe_health(
    url: str,
    api_key: str = "",
    timeout: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[dict]:
    """GET <url>/pool/health. Returns the JSON body, or None on any failure."""
    if not url:
        return None
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            res = await client.get(
                f"{url.rstrip('/')}/pool/health",
                headers={"Authorization": f"Bearer {api_key}"},
            )
        if res.status_code != 200:
            logger.info("[health] %s returned %s: %s", url, res.status_code, res.text[:200])
            return None
        body = res.json()
        return body if isinstance(body, dict) else None
    except (httpx.HTTPError, ValueError) as e:
        logger.info("[health] %s error: %s", url, e)
        return None

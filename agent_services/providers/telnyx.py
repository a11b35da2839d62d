"""
Telnyx telephony provider.

Provisioning a number is four calls: search for an SMS-capable US number,
order it (tagged with a customer reference so orphans can be recognised
later), resolve a messaging profile, and assign the number to it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from agent_services.providers.base import ProviderClient, ProviderError, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 250


@dataclass
class ProvisionedPhone:
    phone_number: str
    messaging_profile_id: str


class TelnyxClient(ProviderClient):
    name = "telnyx"
    base_url = "https://api.telnyx.com/v2"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        messaging_profile_id: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, timeout=timeout, transport=transport)
        self.messaging_profile_id = messaging_profile_id

    async def search_available_number(self) -> str:
        body = await self._request(
            "GET", "/available_phone_numbers",
            params={
                "filter[country_code]": "US",
                "filter[features][]": "sms",
                "filter[limit]": 1,
            },
        )
        numbers = body.get("data") or []
        if not numbers or not numbers[0].get("phone_number"):
            raise ProviderError(self.name, "No available phone numbers found")
        return numbers[0]["phone_number"]

    async def purchase_number(self, phone_number: str, customer_reference: str = "") -> str:
        order = {"phone_numbers": [{"phone_number": phone_number}]}
        if customer_reference:
            order["customer_reference"] = customer_reference
        body = await self._request("POST", "/number_orders", json=order)
        purchased = ((body.get("data") or {}).get("phone_numbers") or [{}])[0].get("phone_number")
        if not purchased:
            raise ProviderError(self.name, f"number purchase for {phone_number} returned no number")
        return purchased

    async def get_or_create_messaging_profile(self) -> str:
        if self.messaging_profile_id:
            return self.messaging_profile_id

        body = await self._request("GET", "/messaging_profiles", params={"page[size]": 1})
        existing = body.get("data") or []
        if existing and existing[0].get("id"):
            return existing[0]["id"]

        body = await self._request(
            "POST", "/messaging_profiles",
            json={"name": "convos-sms", "whitelisted_destinations": ["US"]},
        )
        profile_id = (body.get("data") or {}).get("id")
        if not profile_id:
            raise ProviderError(self.name, "messaging profile creation returned no id")
        logger.info("[telnyx] Created messaging profile %s", profile_id)
        return profile_id

    async def assign_to_profile(self, phone_number: str, profile_id: str) -> None:
        await self._request(
            "PATCH", f"/phone_numbers/{phone_number}",
            json={"messaging_profile_id": profile_id},
        )

    async def provision_phone(self, customer_reference: str = "") -> ProvisionedPhone:
        """Search, purchase, resolve a messaging profile, and assign the number to it."""
        available = await self.search_available_number()
        logger.info("[telnyx] Found: %s", available)

        phone_number = await self.purchase_number(available, customer_reference)
        logger.info("[telnyx] Purchased: %s", phone_number)

        # The number is paid for from here on; release it if it can't be wired up
        try:
            profile_id = await self.get_or_create_messaging_profile()
            await self.assign_to_profile(phone_number, profile_id)
        except ProviderError as exc:
            logger.error("[telnyx] Setting up %s failed, releasing it: %s", phone_number, exc.message)
            await self.delete_phone(phone_number)
            raise
        logger.info("[telnyx] Assigned %s to profile %s", phone_number, profile_id)

        return ProvisionedPhone(phone_number=phone_number, messaging_profile_id=profile_id)

    async def delete_phone(self, phone_number: str) -> bool:
        """Release a phone number. Best-effort."""
        return await self._delete(f"/phone_numbers/{phone_number}", f"phone number {phone_number}")

    async def list_phone_numbers(self) -> list[dict]:
        """Every number on the account, following page numbers."""
        numbers: list[dict] = []
        page_number = 1
        while True:
            body = await self._request(
                "GET", "/phone_numbers",
                params={"page[number]": page_number, "page[size]": LIST_PAGE_SIZE},
            )
            page = body.get("data") or []
            numbers.extend(page)
            total_pages = ((body.get("meta") or {}).get("total_pages")) or 1
            if not page or page_number >= total_pages:
                break
            page_number += 1
        return numbers

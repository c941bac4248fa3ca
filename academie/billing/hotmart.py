"""
Hotmart developer API client.

Used to show the current Hotmart price of the membership product. The
OAuth token and the resolved offer are cached in Django's cache so a busy
pricing page does not hit Hotmart on every request.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from dataclasses import dataclass

import httpx
from django.conf import settings
from django.core.cache import cache

from academie.billing.exceptions import ProcessorError
from academie.billing.exceptions import ProcessorObjectNotFound

logger = logging.getLogger(__name__)

AUTH_URL = "https://api-sec-vlc.hotmart.com/security/oauth/token"
PRODUCTS_URL = "https://developers.hotmart.com/products/api/v1/products"

TOKEN_CACHE_KEY = "billing:hotmart:token"
OFFER_CACHE_KEY = "billing:hotmart:offer:{product_id}"
OFFER_CACHE_SECONDS = 300
# Refresh the token this long before Hotmart says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class HotmartOffer:
    code: str
    name: str
    value: float
    currency: str
    payment_mode: str


class HotmartClient:
    TIMEOUT_SECONDS = 10

    def __init__(self, *, basic_token: str | None = None, http_client=None):
        self.basic_token = (
            settings.HOTMART_BASIC_TOKEN if basic_token is None else basic_token
        )
        self.http = http_client or httpx.Client(timeout=self.TIMEOUT_SECONDS)

    def get_token(self) -> str:
        token = cache.get(TOKEN_CACHE_KEY)
        if token:
            return token
        if not self.basic_token:
            msg = "HOTMART_BASIC_TOKEN is not configured"
            raise ProcessorError(msg)

        data = self._request(
            "POST",
            AUTH_URL,
            params={"grant_type": "client_credentials"},
            headers={"Authorization": self.basic_token},
        )
        token = data["access_token"]
        ttl = max(int(data.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN_SECONDS, 1)
        cache.set(TOKEN_CACHE_KEY, token, ttl)
        return token

    def get_main_offer(self, product_id: str) -> HotmartOffer:
        """Main offer (or the first one) of a Hotmart product."""
        cache_key = OFFER_CACHE_KEY.format(product_id=product_id)
        cached = cache.get(cache_key)
        if cached:
            return HotmartOffer(**cached)

        headers = {"Authorization": f"Bearer {self.get_token()}"}
        products = self._request(
            "GET",
            PRODUCTS_URL,
            params={"id": product_id},
            headers=headers,
        ).get("items") or []
        if not products:
            msg = f"Hotmart product {product_id} not found"
            raise ProcessorObjectNotFound(msg)

        ucode = products[0]["ucode"]
        offers = self._request(
            "GET",
            f"{PRODUCTS_URL}/{ucode}/offers",
            headers=headers,
        ).get("items") or []
        main = next((offer for offer in offers if offer.get("is_main_offer")), None)
        main = main or (offers[0] if offers else None)
        if not main or not main.get("price"):
            msg = f"Hotmart product {product_id} has no priced offer"
            raise ProcessorObjectNotFound(msg)

        offer = HotmartOffer(
            code=main.get("code", ""),
            name=main.get("name") or "Main Offer",
            value=main["price"]["value"],
            currency=main["price"].get("currency_code", ""),
            payment_mode=main.get("payment_mode", ""),
        )
        cache.set(cache_key, asdict(offer), OFFER_CACHE_SECONDS)
        return offer

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = self.http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.exception("Hotmart API call %s %s failed", method, url)
            msg = f"Hotmart API call failed: {e}"
            raise ProcessorError(msg) from e
        return response.json()

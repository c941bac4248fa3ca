"""
Membership price catalog backed by Stripe prices.

Membership prices are tagged with metadata:

    type=membership_tier
    installments=<N>

Editing a price creates a new Stripe price and archives the old one, so
several prices with the same tags pile up over time. Lookups always pick
the most recently created match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings

from academie.billing.constants import MEMBERSHIP_PRICE_TYPE
from academie.billing.exceptions import ProcessorObjectNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceOffer:
    price_id: str
    installments_required: int
    currency: str
    unit_amount: int
    recurring: bool
    created: int = 0

    @classmethod
    def from_stripe(cls, price: dict) -> PriceOffer:
        metadata = price.get("metadata") or {}
        return cls(
            price_id=price["id"],
            installments_required=int(metadata.get("installments") or 1),
            currency=(price.get("currency") or "").lower(),
            unit_amount=price.get("unit_amount") or 0,
            recurring=bool(price.get("recurring")),
            created=price.get("created") or 0,
        )


def installments_of(price: dict) -> int | None:
    """Installment count tagged on a membership price, or None."""
    metadata = price.get("metadata") or {}
    if metadata.get("type") != MEMBERSHIP_PRICE_TYPE:
        return None
    try:
        return int(metadata.get("installments"))
    except (TypeError, ValueError):
        return None


class PriceCatalog:
    def __init__(self, gateway, *, product_id: str | None = None):
        self.gateway = gateway
        if product_id is None:
            product_id = getattr(settings, "STRIPE_MEMBERSHIP_PRODUCT_ID", "")
        self.product_id = product_id

    def _membership_prices(self, currency: str, *, active: bool | None = True):
        params = {"currency": currency.lower()}
        if active is not None:
            params["active"] = active
        if self.product_id:
            params["product"] = self.product_id
        return [
            price
            for price in self.gateway.list_prices(**params)
            if installments_of(price) is not None
            and (price.get("currency") or "").lower() == currency.lower()
        ]

    def get_offer(self, installments: int, currency: str) -> PriceOffer:
        """Newest membership price for this installment count and currency."""
        matches = [
            price
            for price in self._membership_prices(currency)
            if installments_of(price) == installments
        ]
        if not matches:
            msg = f"No membership price for {installments} installments in {currency}"
            raise ProcessorObjectNotFound(msg)
        newest = max(matches, key=lambda price: price.get("created") or 0)
        return PriceOffer.from_stripe(newest)

    def pricing_grid(self, currency: str) -> list[PriceOffer]:
        """Current offer for every installment count, smallest first."""
        newest: dict[int, dict] = {}
        for price in self._membership_prices(currency):
            count = installments_of(price)
            current = newest.get(count)
            if current is None or (price.get("created") or 0) > (
                current.get("created") or 0
            ):
                newest[count] = price
        return [PriceOffer.from_stripe(newest[count]) for count in sorted(newest)]

    def publish_offer(
        self,
        installments: int,
        currency: str,
        unit_amount: int,
    ) -> PriceOffer:
        """
        Create a new price for a tier and archive the ones it replaces.

        One installment is sold as a one-time price; anything more bills
        monthly.
        """
        previous = [
            price
            for price in self._membership_prices(currency)
            if installments_of(price) == installments
        ]
        params = {
            "product": self.product_id,
            "currency": currency.lower(),
            "unit_amount": unit_amount,
            "metadata": {
                "type": MEMBERSHIP_PRICE_TYPE,
                "installments": str(installments),
            },
        }
        if installments > 1:
            params["recurring"] = {"interval": "month"}
        created = self.gateway.create_price(**params)
        for price in previous:
            self.gateway.archive_price(price["id"])
        logger.info(
            "Published membership price %s (%s installments, %s %s); archived %d",
            created.get("id"),
            installments,
            unit_amount,
            currency,
            len(previous),
        )
        return PriceOffer.from_stripe(created)

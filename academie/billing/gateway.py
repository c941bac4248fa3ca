"""
Thin wrapper around the Stripe SDK.

The gateway is constructed with its own API key and passed to the code
that needs Stripe, instead of setting the module-level stripe.api_key.
Tests swap in a MagicMock(spec=StripeGateway).

Every method returns plain dicts and translates Stripe errors:
- missing objects raise ProcessorObjectNotFound
- anything else raises ProcessorError
"""

from __future__ import annotations

import json
import logging

import stripe
from django.conf import settings

from academie.billing.exceptions import AuthenticationFailure
from academie.billing.exceptions import ProcessorError
from academie.billing.exceptions import ProcessorObjectNotFound

logger = logging.getLogger(__name__)

WEBHOOK_TOLERANCE_SECONDS = 300


def _to_dict(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway:
    def __init__(self, api_key: str, *, webhook_secret: str = ""):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls) -> StripeGateway:
        return cls(
            settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        """Check the Stripe-Signature header and return the decoded event."""
        if not self.webhook_secret:
            msg = "STRIPE_WEBHOOK_SECRET is not configured"
            raise AuthenticationFailure(msg)
        if not signature:
            msg = "Missing Stripe-Signature header"
            raise AuthenticationFailure(msg)
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as e:
            raise AuthenticationFailure(str(e)) from e
        try:
            return json.loads(body)
        except ValueError as e:
            msg = "Webhook body is not valid JSON"
            raise AuthenticationFailure(msg) from e

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def retrieve_subscription(self, subscription_id: str) -> dict:
        return self._call(
            "retrieve subscription",
            stripe.Subscription.retrieve,
            subscription_id,
        )

    def cancel_subscription(self, subscription_id: str) -> dict:
        return self._call(
            "cancel subscription",
            stripe.Subscription.cancel,
            subscription_id,
        )

    def update_subscription(self, subscription_id: str, **params) -> dict:
        return self._call(
            "update subscription",
            stripe.Subscription.modify,
            subscription_id,
            **params,
        )

    def create_subscription(self, **params) -> dict:
        return self._call("create subscription", stripe.Subscription.create, **params)

    # ------------------------------------------------------------------
    # Customers and payments
    # ------------------------------------------------------------------

    def create_customer(self, **params) -> dict:
        return self._call("create customer", stripe.Customer.create, **params)

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> dict:
        method = self._call(
            "attach payment method",
            stripe.PaymentMethod.attach,
            payment_method_id,
            customer=customer_id,
        )
        self._call(
            "set default payment method",
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )
        return method

    def create_payment_intent(self, **params) -> dict:
        return self._call("create payment intent", stripe.PaymentIntent.create, **params)

    def retrieve_payment_intent(self, payment_intent_id: str) -> dict:
        return self._call(
            "retrieve payment intent",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
        )

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def retrieve_price(self, price_id: str) -> dict:
        return self._call("retrieve price", stripe.Price.retrieve, price_id)

    def list_prices(self, **params) -> list[dict]:
        try:
            prices = stripe.Price.list(api_key=self.api_key, limit=100, **params)
            return [_to_dict(price) for price in prices.auto_paging_iter()]
        except stripe.StripeError as e:
            logger.exception("Stripe error listing prices")
            msg = f"Failed to list prices: {e}"
            raise ProcessorError(msg) from e

    def create_price(self, **params) -> dict:
        return self._call("create price", stripe.Price.create, **params)

    def archive_price(self, price_id: str) -> dict:
        return self._call("archive price", stripe.Price.modify, price_id, active=False)

    # ------------------------------------------------------------------

    def _call(self, action: str, method, *args, **params) -> dict:
        try:
            return _to_dict(method(*args, api_key=self.api_key, **params))
        except stripe.InvalidRequestError as e:
            if e.http_status == 404 or e.code == "resource_missing":
                msg = f"Stripe could not {action}: {e.user_message or e}"
                raise ProcessorObjectNotFound(msg) from e
            logger.exception("Stripe rejected request to %s", action)
            msg = f"Failed to {action}: {e}"
            raise ProcessorError(msg) from e
        except stripe.StripeError as e:
            logger.exception("Stripe error trying to %s", action)
            msg = f"Failed to {action}: {e}"
            raise ProcessorError(msg) from e

"""
Shared builders for billing tests.

Payload builders return plain dicts shaped like the processor payloads the
ingestors read; only the fields the code looks at are filled in.
"""

import json
from unittest.mock import MagicMock

from academie.billing.gateway import StripeGateway

PERIOD_END_TS = 1_900_000_000  # 2030-03-17


class RecordingDispatcher:
    """Collects effects instead of queueing Celery tasks."""

    def __init__(self):
        self.effects = []

    def dispatch(self, effects):
        self.effects.extend(effects)

    def of_type(self, effect_type):
        return [effect for effect in self.effects if isinstance(effect, effect_type)]


def fake_gateway(event=None) -> MagicMock:
    """A StripeGateway double whose verify_webhook returns event."""
    gateway = MagicMock(spec=StripeGateway)
    if event is not None:
        gateway.verify_webhook.return_value = event
    return gateway


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def invoice(
    invoice_id: str,
    *,
    customer: str,
    subscription: str,
    amount_paid: int = 33300,
    currency: str = "usd",
    nested: bool = False,
) -> dict:
    payload = {
        "id": invoice_id,
        "object": "invoice",
        "customer": customer,
        "amount_paid": amount_paid,
        "currency": currency,
    }
    if nested:
        # Newer API versions move the subscription under parent
        payload["parent"] = {"subscription_details": {"subscription": subscription}}
    else:
        payload["subscription"] = subscription
    return payload


def subscription(
    subscription_id: str,
    *,
    customer: str,
    status: str = "active",
    period_end: int = PERIOD_END_TS,
    installments: int | None = 3,
    user_id=None,
    cancel_at: int | None = None,
    period_on_item: bool = False,
) -> dict:
    metadata = {}
    if installments is not None:
        metadata["installments"] = str(installments)
    if user_id is not None:
        metadata["userId"] = str(user_id)
    payload = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at": cancel_at,
        "metadata": metadata,
        "items": {"data": [{"price": {"id": "price_test", "metadata": {}}}]},
    }
    if period_on_item:
        payload["items"]["data"][0]["current_period_end"] = period_end
    else:
        payload["current_period_end"] = period_end
    return payload


def payment_intent(
    intent_id: str,
    *,
    customer: str | None = None,
    user_id=None,
    amount: int = 99700,
    currency: str = "usd",
    payment_type: str = "MEMBERSHIP_FULL",
    status: str = "succeeded",
    closer: str = "",
) -> dict:
    metadata = {"type": payment_type}
    if user_id is not None:
        metadata["userId"] = str(user_id)
    if closer:
        metadata["closer"] = closer
    return {
        "id": intent_id,
        "object": "payment_intent",
        "customer": customer,
        "amount": amount,
        "amount_received": amount,
        "currency": currency,
        "status": status,
        "metadata": metadata,
    }


def hotmart_postback(
    event: str,
    *,
    transaction: str,
    email: str = "buyer@example.com",
    product_id: int = 1001,
    value: float = 997.0,
    currency: str = "BRL",
    name: str = "Ana Souza",
    hottok: str | None = None,
) -> dict:
    payload = {
        "id": f"hm-{transaction}",
        "event": event,
        "version": "2.0.0",
        "data": {
            "product": {"id": product_id, "name": "Academie"},
            "buyer": {
                "email": email,
                "name": name,
                "checkout_phone": "+5511999999999",
            },
            "purchase": {
                "transaction": transaction,
                "status": "APPROVED",
                "price": {"value": value, "currency_value": currency},
            },
        },
    }
    if hottok is not None:
        payload["hottok"] = hottok
    return payload


def as_body(payload: dict) -> bytes:
    return json.dumps(payload).encode()

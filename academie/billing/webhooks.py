"""
Webhook ingestion for Stripe and Hotmart.

Each ingestor verifies the request, classifies the event into one typed
membership command, finds (or creates) the account, runs the command
through the state machine and queues the resulting side effects.

Stripe events handled:
- payment_intent.succeeded: pay-once membership purchase (MEMBERSHIP_FULL)
- invoice.payment_succeeded / invoice.paid: installment charge
- customer.subscription.created: new subscription replaces any old link
- customer.subscription.updated: status and period sync
- customer.subscription.deleted: subscription ended

Hotmart events handled:
- PURCHASE_APPROVED / PURCHASE_COMPLETE: membership or add-on purchase
- PURCHASE_REFUNDED / PURCHASE_CHARGEBACK / PURCHASE_CANCELED: reversal

Anything else is acknowledged and dropped. Only a failed signature or
shared-secret check produces an error response.
"""

from __future__ import annotations

import hmac
import json
import logging
from dataclasses import dataclass
from dataclasses import replace
from datetime import UTC
from datetime import datetime

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db import transaction
from pydantic import ValidationError

from academie.billing.commands import RecordAddOnPurchase
from academie.billing.commands import RecordPaymentReversal
from academie.billing.commands import RecordSuccessfulCharge
from academie.billing.commands import RecurringSubscriptionEnded
from academie.billing.commands import RecurringSubscriptionObserved
from academie.billing.constants import MEMBERSHIP_FULL_PAYMENT_TYPE
from academie.billing.constants import NotificationKind
from academie.billing.constants import PaymentProcessor
from academie.billing.constants import TransactionStatus
from academie.billing.effects import EffectDispatcher
from academie.billing.effects import NotifyAccount
from academie.billing.exceptions import AuthenticationFailure
from academie.billing.gateway import StripeGateway
from academie.billing.membership import MembershipStateMachine
from academie.billing.membership import minor_units
from academie.billing.schemas import HotmartPostback

logger = logging.getLogger(__name__)


class MalformedPayload(ValueError):
    """Request body could not be decoded."""


@dataclass(frozen=True)
class AccountLookup:
    account_id: int | None = None
    customer_id: str | None = None
    transaction_code: str | None = None
    email: str = ""
    name: str = ""
    phone: str = ""


@dataclass(frozen=True)
class ClassifiedEvent:
    event_type: str
    command: object
    lookup: AccountLookup
    # Buyers we have never seen get an account for approved purchases
    create_account: bool = False


@dataclass(frozen=True)
class IngestResult:
    event_type: str
    outcome: str
    account_id: int | None = None

    def as_dict(self) -> dict:
        return {
            "received": True,
            "event_type": self.event_type,
            "outcome": self.outcome,
        }


def from_timestamp(value) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _int_or_none(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class EventIngestor:
    """Shared resolve-and-dispatch flow for processor webhooks."""

    processor = ""

    HANDLERS = {
        RecordSuccessfulCharge: "record_successful_charge",
        RecurringSubscriptionObserved: "observe_subscription",
        RecurringSubscriptionEnded: "end_subscription",
        RecordAddOnPurchase: "record_add_on_purchase",
        RecordPaymentReversal: "record_payment_reversal",
    }

    def __init__(self, *, machine=None, dispatcher=None):
        self.machine = machine or MembershipStateMachine()
        self.dispatcher = dispatcher or EffectDispatcher()

    def verify(self, payload: bytes, headers) -> dict:
        raise NotImplementedError

    def classify(self, event: dict) -> ClassifiedEvent | None:
        raise NotImplementedError

    def event_type_of(self, event: dict) -> str:
        raise NotImplementedError

    def ingest(self, payload: bytes, headers) -> IngestResult:
        event = self.verify(payload, headers)
        classified = self.classify(event)
        if classified is None:
            event_type = self.event_type_of(event)
            logger.info("Ignoring %s event %s", self.processor, event_type)
            return IngestResult(event_type, "dropped")
        return self.handle(classified)

    def handle(self, classified: ClassifiedEvent) -> IngestResult:
        with transaction.atomic():
            user = self.resolve_account(classified.lookup)
            effects = []
            if user is None:
                if not classified.create_account:
                    logger.warning(
                        "No account for %s event %s (%s)",
                        self.processor,
                        classified.event_type,
                        classified.lookup,
                    )
                    return IngestResult(classified.event_type, "account_not_found")
                user, created = self.create_account(classified.lookup)
                if created:
                    effects.append(NotifyAccount(user.pk, NotificationKind.ACCOUNT_SETUP))

            command = replace(classified.command, account_id=user.pk)
            handler = getattr(self.machine, self.HANDLERS[type(command)])
            result = handler(command)
            self.dispatcher.dispatch([*effects, *result.effects])

        logger.info(
            "Processed %s event %s for account %s: %s",
            self.processor,
            classified.event_type,
            user.pk,
            result.outcome.value,
        )
        return IngestResult(classified.event_type, result.outcome.value, user.pk)

    def resolve_account(self, lookup: AccountLookup):
        users = get_user_model().objects
        if lookup.account_id:
            user = users.filter(pk=lookup.account_id).first()
            if user is not None:
                return user
        user = users.by_processor_linkage(
            customer_id=lookup.customer_id,
            transaction_code=lookup.transaction_code,
        ).first()
        if user is None and lookup.email:
            user = users.get_by_email(lookup.email)
        return user

    def create_account(self, lookup: AccountLookup):
        """Create the buyer's account; returns (user, created)."""
        users = get_user_model().objects
        try:
            with transaction.atomic():
                user = users.create_from_payment(
                    lookup.email,
                    name=lookup.name,
                    phone=lookup.phone,
                )
        except IntegrityError:
            # Another delivery created the same buyer first
            return users.get_by_email(lookup.email), False
        logger.info("Created account %s for %s buyer", user.pk, self.processor)
        return user, True


class StripeEventIngestor(EventIngestor):
    processor = PaymentProcessor.STRIPE

    def __init__(self, *, gateway=None, **kwargs):
        super().__init__(**kwargs)
        self.gateway = gateway or StripeGateway.from_settings()

    def verify(self, payload: bytes, headers) -> dict:
        return self.gateway.verify_webhook(payload, headers.get("Stripe-Signature", ""))

    def event_type_of(self, event: dict) -> str:
        return event.get("type", "")

    def classify(self, event: dict) -> ClassifiedEvent | None:
        event_type = self.event_type_of(event)
        obj = (event.get("data") or {}).get("object") or {}
        if event_type == "payment_intent.succeeded":
            return self._classify_full_payment(event_type, obj)
        if event_type in ("invoice.payment_succeeded", "invoice.paid"):
            return self._classify_installment(event_type, obj)
        if event_type in (
            "customer.subscription.created",
            "customer.subscription.updated",
        ):
            return self._classify_subscription(event_type, obj)
        if event_type == "customer.subscription.deleted":
            return ClassifiedEvent(
                event_type,
                RecurringSubscriptionEnded(account_id=None, subscription_id=obj["id"]),
                AccountLookup(customer_id=obj.get("customer")),
            )
        return None

    def _classify_full_payment(self, event_type, intent) -> ClassifiedEvent | None:
        metadata = intent.get("metadata") or {}
        if metadata.get("type") != MEMBERSHIP_FULL_PAYMENT_TYPE:
            return None
        command = RecordSuccessfulCharge(
            account_id=None,
            amount_minor=intent.get("amount_received") or intent.get("amount") or 0,
            currency=intent.get("currency") or "",
            processor=PaymentProcessor.STRIPE,
            processor_reference=intent["id"],
            is_recurring_installment=False,
            closer=metadata.get("closer", ""),
        )
        lookup = AccountLookup(
            account_id=_int_or_none(metadata.get("userId")),
            customer_id=intent.get("customer"),
        )
        return ClassifiedEvent(event_type, command, lookup)

    def _classify_installment(self, event_type, invoice) -> ClassifiedEvent | None:
        subscription_id = invoice_subscription_id(invoice)
        amount = invoice.get("amount_paid") or 0
        # Trial and other zero-amount invoices are not installments
        if not subscription_id or amount <= 0:
            return None
        command = RecordSuccessfulCharge(
            account_id=None,
            amount_minor=amount,
            currency=invoice.get("currency") or "",
            processor=PaymentProcessor.STRIPE,
            processor_reference=invoice["id"],
            is_recurring_installment=True,
            subscription_id=subscription_id,
        )
        return ClassifiedEvent(
            event_type,
            command,
            AccountLookup(customer_id=invoice.get("customer")),
        )

    def _classify_subscription(self, event_type, subscription) -> ClassifiedEvent:
        command = subscription_observed_command(
            subscription,
            is_new_subscription=event_type == "customer.subscription.created",
        )
        lookup = AccountLookup(
            account_id=_int_or_none((subscription.get("metadata") or {}).get("userId")),
            customer_id=subscription.get("customer"),
        )
        return ClassifiedEvent(event_type, command, lookup)


def invoice_subscription_id(invoice: dict) -> str | None:
    """Subscription id from an invoice, old or new API layout."""
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    if subscription:
        return subscription
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_period_end(subscription: dict) -> datetime | None:
    period_end = subscription.get("current_period_end")
    if not period_end:
        period_end = _first_item(subscription).get("current_period_end")
    return from_timestamp(period_end)


def subscription_installments(subscription: dict) -> int | None:
    metadata = subscription.get("metadata") or {}
    installments = _int_or_none(metadata.get("installments"))
    if installments is None:
        price = _first_item(subscription).get("price") or {}
        installments = _int_or_none((price.get("metadata") or {}).get("installments"))
    return installments


def subscription_observed_command(
    subscription: dict,
    *,
    account_id: int | None = None,
    is_new_subscription: bool = False,
) -> RecurringSubscriptionObserved:
    customer = subscription.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    return RecurringSubscriptionObserved(
        account_id=account_id,
        subscription_id=subscription["id"],
        raw_status=subscription.get("status") or "",
        period_end=subscription_period_end(subscription),
        cancel_at=from_timestamp(subscription.get("cancel_at")),
        installments_meta=subscription_installments(subscription),
        customer_id=customer,
        is_new_subscription=is_new_subscription,
    )


class HotmartEventIngestor(EventIngestor):
    processor = PaymentProcessor.HOTMART

    APPROVED_EVENTS = ("PURCHASE_APPROVED", "PURCHASE_COMPLETE")
    REVERSAL_EVENTS = {
        "PURCHASE_REFUNDED": TransactionStatus.REFUNDED,
        "PURCHASE_CANCELED": TransactionStatus.REFUNDED,
        "PURCHASE_CHARGEBACK": TransactionStatus.CHARGEBACK,
    }

    def __init__(
        self,
        *,
        hottok: str | None = None,
        membership_product_ids=None,
        addon_product_ids=None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.hottok = settings.HOTMART_HOTTOK if hottok is None else hottok
        if membership_product_ids is None:
            membership_product_ids = settings.HOTMART_MEMBERSHIP_PRODUCT_IDS
        if addon_product_ids is None:
            addon_product_ids = settings.HOTMART_ADDON_PRODUCT_IDS
        self.membership_product_ids = {str(pid) for pid in membership_product_ids}
        self.addon_product_ids = {str(pid) for pid in addon_product_ids}

    def verify(self, payload: bytes, headers) -> dict:
        try:
            body = json.loads(payload or b"{}")
        except ValueError as e:
            msg = "Hotmart body is not valid JSON"
            raise MalformedPayload(msg) from e
        if not isinstance(body, dict):
            msg = "Hotmart body must be a JSON object"
            raise MalformedPayload(msg)
        received = headers.get("X-Hotmart-Hottok") or body.get("hottok") or ""
        if not self.hottok:
            msg = "HOTMART_HOTTOK is not configured"
            raise AuthenticationFailure(msg)
        if not hmac.compare_digest(str(received), self.hottok):
            msg = "Invalid Hotmart hottok"
            raise AuthenticationFailure(msg)
        return body

    def event_type_of(self, event: dict) -> str:
        return event.get("event", "")

    def product_kind(self, product_id: str) -> str | None:
        if product_id in self.addon_product_ids:
            return "add_on"
        if not self.membership_product_ids or product_id in self.membership_product_ids:
            return "membership"
        return None

    def classify(self, event: dict) -> ClassifiedEvent | None:
        try:
            postback = HotmartPostback.model_validate(event)
        except ValidationError as e:
            logger.warning("Unreadable Hotmart postback: %s", e)
            return None
        event_type = postback.event
        data = postback.data
        reference = data.purchase.transaction
        kind = self.product_kind(data.product.id)
        if not reference or kind is None:
            return None

        lookup = AccountLookup(
            transaction_code=reference,
            email=data.buyer.normalized_email,
            name=data.buyer.name,
            phone=data.buyer.checkout_phone,
        )
        amount_minor = minor_units(data.purchase.price.value)
        currency = data.purchase.price.currency_value.lower()

        if event_type in self.APPROVED_EVENTS:
            if not lookup.email:
                return None
            if kind == "add_on":
                command = RecordAddOnPurchase(
                    account_id=None,
                    amount_minor=amount_minor,
                    currency=currency,
                    processor=PaymentProcessor.HOTMART,
                    processor_reference=reference,
                )
            else:
                command = RecordSuccessfulCharge(
                    account_id=None,
                    amount_minor=amount_minor,
                    currency=currency,
                    processor=PaymentProcessor.HOTMART,
                    processor_reference=reference,
                    is_recurring_installment=False,
                )
            return ClassifiedEvent(event_type, command, lookup, create_account=True)

        if event_type in self.REVERSAL_EVENTS and kind == "membership":
            command = RecordPaymentReversal(
                account_id=None,
                processor=PaymentProcessor.HOTMART,
                processor_reference=reference,
                reversal_status=self.REVERSAL_EVENTS[event_type],
            )
            return ClassifiedEvent(event_type, command, lookup)
        return None

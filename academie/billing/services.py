"""
Member-facing Stripe operations.

This service provides:
- Starting a membership from a catalog price (pay once or in installments)
- Scheduling a subscription to cancel at the end of the period
- Reactivating a subscription scheduled to cancel

Stripe remains the authority for subscription status; every subscription
returned here is fed back through the state machine as an observation,
exactly like a webhook.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import transaction

from academie.billing.catalog import installments_of
from academie.billing.commands import SelectInstallmentPlan
from academie.billing.constants import MEMBERSHIP_FULL_PAYMENT_TYPE
from academie.billing.effects import EffectDispatcher
from academie.billing.exceptions import Conflict
from academie.billing.exceptions import InvalidRequest
from academie.billing.exceptions import NotFound
from academie.billing.gateway import StripeGateway
from academie.billing.membership import MembershipStateMachine
from academie.billing.webhooks import subscription_observed_command

if TYPE_CHECKING:
    from academie.billing.membership import MembershipResult
    from academie.users.models import User

logger = logging.getLogger(__name__)


@dataclass
class StartMembershipResult:
    kind: str  # "payment_intent" or "subscription"
    stripe_id: str
    status: str
    client_secret: str | None
    installments_required: int


class MembershipService:
    """
    Usage:
        service = MembershipService()
        result = service.start_membership(user, "price_123", "pm_456")
    """

    def __init__(self, *, gateway=None, machine=None, dispatcher=None):
        self.gateway = gateway or StripeGateway.from_settings()
        self.machine = machine or MembershipStateMachine()
        self.dispatcher = dispatcher or EffectDispatcher()

    def get_or_create_stripe_customer(self, user: User) -> str:
        """Return the member's Stripe customer id, creating the customer if needed."""
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer = self.gateway.create_customer(
            email=user.email,
            name=user.name or user.email,
            metadata={"userId": str(user.pk)},
        )
        user.stripe_customer_id = customer["id"]
        user.save(update_fields=["stripe_customer_id"])
        logger.info("Created Stripe customer %s for account %s", customer["id"], user.pk)
        return customer["id"]

    def start_membership(
        self,
        user: User,
        price_id: str,
        payment_method_id: str,
    ) -> StartMembershipResult:
        """
        Start paying for a membership tier.

        A one-installment price creates a confirmed payment intent tagged
        MEMBERSHIP_FULL; the payment_intent.succeeded webhook grants lifetime
        access. Any other price creates a monthly subscription and copies
        its installment count onto the account. A plan no larger than the
        installments already paid is refused.
        """
        if user.has_lifetime_access:
            msg = "Account already has lifetime access"
            raise Conflict(msg)

        price = self.gateway.retrieve_price(price_id)
        installments = installments_of(price)
        if installments is None or installments < 1:
            msg = f"Price {price_id} is not a membership price"
            raise InvalidRequest(msg)
        if installments > 1 and user.installments_paid >= installments:
            msg = (
                f"Account {user.pk} has already paid {user.installments_paid} "
                f"installments; a {installments}-installment plan cannot start"
            )
            raise Conflict(msg)

        customer_id = self.get_or_create_stripe_customer(user)
        self.gateway.attach_payment_method(payment_method_id, customer_id)

        if installments == 1:
            intent = self.gateway.create_payment_intent(
                amount=price.get("unit_amount"),
                currency=price.get("currency"),
                customer=customer_id,
                payment_method=payment_method_id,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={
                    "type": MEMBERSHIP_FULL_PAYMENT_TYPE,
                    "userId": str(user.pk),
                    "priceId": price_id,
                },
            )
            return StartMembershipResult(
                kind="payment_intent",
                stripe_id=intent["id"],
                status=intent.get("status", ""),
                client_secret=intent.get("client_secret"),
                installments_required=installments,
            )

        subscription = self.gateway.create_subscription(
            customer=customer_id,
            items=[{"price": price_id}],
            default_payment_method=payment_method_id,
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
            metadata={"userId": str(user.pk), "installments": str(installments)},
        )
        with transaction.atomic():
            self._select_plan(user, installments)
            self._observe(subscription, user, is_new_subscription=True)

        latest_invoice = subscription.get("latest_invoice") or {}
        payment_intent = (
            latest_invoice.get("payment_intent") if isinstance(latest_invoice, dict) else None
        ) or {}
        return StartMembershipResult(
            kind="subscription",
            stripe_id=subscription["id"],
            status=subscription.get("status", ""),
            client_secret=payment_intent.get("client_secret"),
            installments_required=installments,
        )

    def schedule_cancellation(self, user: User) -> MembershipResult:
        """Stop billing at the end of the current period."""
        return self._set_cancel_at_period_end(user, cancel=True)

    def reactivate(self, user: User) -> MembershipResult:
        """Undo a scheduled cancellation."""
        return self._set_cancel_at_period_end(user, cancel=False)

    def _set_cancel_at_period_end(self, user: User, *, cancel: bool) -> MembershipResult:
        if not user.stripe_subscription_id:
            msg = f"Account {user.pk} has no active subscription"
            raise NotFound(msg)
        subscription = self.gateway.update_subscription(
            user.stripe_subscription_id,
            cancel_at_period_end=cancel,
        )
        logger.info(
            "Set cancel_at_period_end=%s on subscription %s for account %s",
            cancel,
            subscription.get("id"),
            user.pk,
        )
        return self._observe(subscription, user)

    def _select_plan(self, user: User, installments: int) -> None:
        result = self.machine.select_installment_plan(
            SelectInstallmentPlan(account_id=user.pk, installments_required=installments),
        )
        self.dispatcher.dispatch(result.effects)

    def _observe(self, subscription: dict, user: User, *, is_new_subscription=False):
        command = subscription_observed_command(
            subscription,
            account_id=user.pk,
            is_new_subscription=is_new_subscription,
        )
        result = self.machine.observe_subscription(command)
        self.dispatcher.dispatch(result.effects)
        return result

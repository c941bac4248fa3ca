"""
Admin reconciliation tools.

Every change to membership state goes through MembershipStateMachine,
so overrides obey the same goal and lifetime rules as webhook events.

Operations:
- apply_override: set status and installment counters by hand
- grant_lifetime: override straight to lifetime access (1/1)
- link_subscription: attach an existing Stripe subscription to an account
- record_stripe_payment: backfill a Stripe payment missing from the ledger
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db import transaction

from academie.billing.commands import UNSET
from academie.billing.commands import ManualOverride
from academie.billing.constants import MembershipStatus
from academie.billing.constants import PaymentProcessor
from academie.billing.constants import TransactionKind
from academie.billing.constants import TransactionStatus
from academie.billing.effects import EffectDispatcher
from academie.billing.exceptions import AccountNotFound
from academie.billing.exceptions import Conflict
from academie.billing.exceptions import InvalidRequest
from academie.billing.gateway import StripeGateway
from academie.billing.membership import LedgerEntry
from academie.billing.membership import MembershipStateMachine
from academie.billing.models import Transaction
from academie.billing.webhooks import subscription_observed_command

if TYPE_CHECKING:
    from academie.billing.membership import MembershipResult

logger = logging.getLogger(__name__)


class ReconciliationService:
    def __init__(self, *, machine=None, gateway=None, dispatcher=None):
        self.machine = machine or MembershipStateMachine()
        self._gateway = gateway
        self.dispatcher = dispatcher or EffectDispatcher()

    @property
    def gateway(self) -> StripeGateway:
        if self._gateway is None:
            self._gateway = StripeGateway.from_settings()
        return self._gateway

    def _get_account(self, account_id):
        user = get_user_model().objects.filter(pk=account_id).first()
        if user is None:
            msg = f"Account {account_id} does not exist"
            raise AccountNotFound(msg)
        return user

    def apply_override(
        self,
        account_id: int,
        *,
        target_status: str,
        installments_paid: int,
        installments_required: int,
        current_period_end=UNSET,
        paying_status: str = MembershipStatus.ACTIVE,
    ) -> MembershipResult:
        command = ManualOverride(
            account_id=account_id,
            target_status=target_status,
            installments_paid=installments_paid,
            installments_required=installments_required,
            current_period_end=current_period_end,
            paying_status=paying_status,
        )
        with transaction.atomic():
            result = self.machine.manual_override(command)
            self.dispatcher.dispatch(result.effects)
        logger.info(
            "Manual override on account %s: %s (%s/%s)",
            account_id,
            result.projection.status,
            result.projection.installments_paid,
            result.projection.installments_required,
        )
        return result

    def grant_lifetime(self, account_id: int) -> MembershipResult:
        """Lifetime access with a visual 1/1; any linked subscription is cancelled."""
        return self.apply_override(
            account_id,
            target_status=MembershipStatus.LIFETIME_ACCESS,
            installments_paid=1,
            installments_required=1,
        )

    def link_subscription(self, account_id: int, subscription_id: str) -> MembershipResult:
        """
        Attach an existing Stripe subscription and sync its state.

        Raises:
            AccountNotFound: no such account
            ProcessorObjectNotFound: Stripe has no such subscription
            Conflict: the subscription or its customer belongs to another
                account, or the account already has lifetime access
        """
        self._get_account(account_id)
        subscription = self.gateway.retrieve_subscription(subscription_id)
        command = subscription_observed_command(
            subscription,
            account_id=account_id,
            is_new_subscription=True,
        )

        with transaction.atomic():
            user = (
                get_user_model().objects.select_for_update().get(pk=account_id)
            )
            owners = (
                get_user_model()
                .objects.by_processor_linkage(
                    customer_id=command.customer_id,
                    subscription_id=command.subscription_id,
                )
                .exclude(pk=account_id)
            )
            other = owners.first()
            if other is not None:
                msg = (
                    f"Subscription {subscription_id} or its customer is already "
                    f"linked to account {other.pk}"
                )
                raise Conflict(msg)
            if user.has_lifetime_access:
                msg = f"Account {account_id} has lifetime access and cannot carry a subscription"
                raise Conflict(msg)
            result = self.machine.observe_subscription(command)
            self.dispatcher.dispatch(result.effects)

        logger.info(
            "Linked subscription %s to account %s (%s)",
            subscription_id,
            account_id,
            result.projection.status,
        )
        return result

    def record_stripe_payment(
        self,
        account_id: int,
        payment_intent_id: str,
        *,
        closer: str = "",
    ) -> Transaction:
        """
        Backfill a succeeded Stripe payment intent into the ledger.

        Only the ledger changes. Installment counters are corrected with
        apply_override when needed.
        """
        user = self._get_account(account_id)
        if not payment_intent_id.startswith("pi_"):
            msg = "Payment intent ids start with pi_"
            raise InvalidRequest(msg)
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        if intent.get("status") != "succeeded":
            msg = f"Payment {payment_intent_id} has status {intent.get('status')}"
            raise InvalidRequest(msg)

        entry = LedgerEntry(
            processor=PaymentProcessor.STRIPE,
            reference=payment_intent_id,
            amount_minor=intent.get("amount_received") or intent.get("amount") or 0,
            currency=intent.get("currency") or "",
            kind=TransactionKind.BACKFILL,
            closer=closer,
        )
        exists = (
            Transaction.objects.for_reference(entry.processor, entry.reference)
            .filter(status=TransactionStatus.SUCCEEDED)
            .exists()
        )
        if exists:
            msg = f"Payment {payment_intent_id} is already recorded"
            raise Conflict(msg)
        try:
            with transaction.atomic():
                ledger_row = Transaction.objects.create(
                    user=user,
                    amount=entry.amount,
                    currency=entry.currency.lower(),
                    status=entry.status,
                    kind=entry.kind,
                    processor=entry.processor,
                    processor_reference=entry.reference,
                    closer=entry.closer,
                )
        except IntegrityError as e:
            msg = f"Payment {payment_intent_id} is already recorded"
            raise Conflict(msg) from e
        logger.info("Backfilled payment %s for account %s", payment_intent_id, user.pk)
        return ledger_row

"""
Membership state machine: the only writer of membership fields.

Each public method handles one command for one account inside a single
database transaction:

1. Lock the account row.
2. For payment commands, append the ledger row. A processor reference that
   is already recorded means the event is a duplicate and nothing changes.
3. Run the pure transition from academie.billing.transitions.
4. Save the changed fields.

The returned MembershipResult carries the requested side effects. Callers
pass them to an EffectDispatcher; this class never performs them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db import transaction
from django.utils import timezone

from academie.billing import transitions
from academie.billing.constants import DEFAULT_RENEWAL_DAYS
from academie.billing.constants import TransactionKind
from academie.billing.constants import TransactionStatus
from academie.billing.exceptions import AccountNotFound
from academie.billing.models import Transaction
from academie.billing.transitions import MembershipState
from academie.billing.transitions import Outcome

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from academie.billing.commands import ManualOverride
    from academie.billing.commands import MarkLapsed
    from academie.billing.commands import RecordAddOnPurchase
    from academie.billing.commands import RecordPaymentReversal
    from academie.billing.commands import RecordSuccessfulCharge
    from academie.billing.commands import RecurringSubscriptionEnded
    from academie.billing.commands import RecurringSubscriptionObserved
    from academie.billing.commands import SelectInstallmentPlan
    from academie.users.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountProjection:
    """Read-only view of an account's billing fields."""

    account_id: int
    status: str
    installments_paid: int
    installments_required: int
    current_period_end: datetime | None

    @classmethod
    def from_user(cls, user: User) -> AccountProjection:
        return cls(
            account_id=user.pk,
            status=user.subscription_status,
            installments_paid=user.installments_paid,
            installments_required=user.installments_required,
            current_period_end=user.current_period_end,
        )


@dataclass(frozen=True)
class MembershipResult:
    projection: AccountProjection
    effects: tuple
    outcome: Outcome

    @property
    def applied(self) -> bool:
        return self.outcome == Outcome.APPLIED


@dataclass(frozen=True)
class LedgerEntry:
    processor: str
    reference: str
    amount_minor: int
    currency: str
    kind: str
    status: str = TransactionStatus.SUCCEEDED
    subscription_id: str = ""
    closer: str = ""

    @property
    def amount(self) -> Decimal:
        return (Decimal(self.amount_minor) / 100).quantize(Decimal("0.01"))


def minor_units(amount) -> int:
    """Convert a major-unit amount (e.g. 997.0) to minor units."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal(1)))


class MembershipStateMachine:
    """
    Apply billing commands to accounts.

    Usage:
        machine = MembershipStateMachine()
        result = machine.record_successful_charge(command)
        EffectDispatcher().dispatch(result.effects)
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = timezone.now,
        renewal_days: int | None = None,
    ):
        self.clock = clock
        if renewal_days is None:
            renewal_days = getattr(
                settings,
                "MEMBERSHIP_RENEWAL_DAYS",
                DEFAULT_RENEWAL_DAYS,
            )
        self.renewal_days = renewal_days

    # ------------------------------------------------------------------
    # Payment commands
    # ------------------------------------------------------------------

    def record_successful_charge(
        self,
        command: RecordSuccessfulCharge,
    ) -> MembershipResult:
        kind = (
            TransactionKind.INSTALLMENT
            if command.is_recurring_installment
            else TransactionKind.FULL_PAYMENT
        )
        entry = LedgerEntry(
            processor=command.processor,
            reference=command.processor_reference,
            amount_minor=command.amount_minor,
            currency=command.currency,
            kind=kind,
            subscription_id=command.subscription_id or "",
            closer=command.closer,
        )
        return self._apply(
            command.account_id,
            lambda state: transitions.record_charge(state, command, command.account_id),
            ledger=entry,
        )

    def record_add_on_purchase(
        self,
        command: RecordAddOnPurchase,
    ) -> MembershipResult:
        entry = LedgerEntry(
            processor=command.processor,
            reference=command.processor_reference,
            amount_minor=command.amount_minor,
            currency=command.currency,
            kind=TransactionKind.ADD_ON,
        )
        return self._apply(
            command.account_id,
            lambda state: transitions.record_add_on(state, command, command.account_id),
            ledger=entry,
        )

    def record_payment_reversal(
        self,
        command: RecordPaymentReversal,
    ) -> MembershipResult:
        """
        Revoke access for a refunded or charged-back payment.

        Reversals for payments we never recorded for this account are
        ignored.
        """
        with transaction.atomic():
            user = self._lock(command.account_id)
            original = (
                Transaction.objects.succeeded()
                .for_reference(command.processor, command.processor_reference)
                .filter(user=user)
                .first()
            )
            if original is None:
                logger.info(
                    "Ignoring reversal of unknown payment %s:%s for account %s",
                    command.processor,
                    command.processor_reference,
                    user.pk,
                )
                return self._result(user, (), Outcome.IGNORED)
            entry = LedgerEntry(
                processor=command.processor,
                reference=command.processor_reference,
                amount_minor=minor_units(original.amount),
                currency=original.currency,
                kind=TransactionKind.REVERSAL,
                status=command.reversal_status,
            )
            return self._run(
                user,
                lambda state: transitions.reverse_payment(state, command, user.pk),
                ledger=entry,
            )

    # ------------------------------------------------------------------
    # Subscription commands
    # ------------------------------------------------------------------

    def observe_subscription(
        self,
        command: RecurringSubscriptionObserved,
    ) -> MembershipResult:
        command = self._without_foreign_customer(command)
        return self._apply(
            command.account_id,
            lambda state: transitions.observe_subscription(
                state,
                command,
                command.account_id,
            ),
        )

    def end_subscription(
        self,
        command: RecurringSubscriptionEnded,
    ) -> MembershipResult:
        return self._apply(
            command.account_id,
            lambda state: transitions.end_subscription(state, command, command.account_id),
        )

    def select_installment_plan(
        self,
        command: SelectInstallmentPlan,
    ) -> MembershipResult:
        return self._apply(
            command.account_id,
            lambda state: transitions.select_plan(state, command, command.account_id),
        )

    # ------------------------------------------------------------------
    # Administrative commands
    # ------------------------------------------------------------------

    def manual_override(self, command: ManualOverride) -> MembershipResult:
        now = self.clock()
        return self._apply(
            command.account_id,
            lambda state: transitions.manual_override(
                state,
                command,
                command.account_id,
                now,
                self.renewal_days,
            ),
        )

    def mark_lapsed(self, command: MarkLapsed) -> MembershipResult:
        return self._apply(
            command.account_id,
            lambda state: transitions.mark_lapsed(state, command, command.account_id),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _without_foreign_customer(
        self,
        command: RecurringSubscriptionObserved,
    ) -> RecurringSubscriptionObserved:
        """Drop a Stripe customer id that another account already holds."""
        if not command.customer_id:
            return command
        owner = (
            get_user_model()
            .objects.filter(stripe_customer_id=command.customer_id)
            .exclude(pk=command.account_id)
            .values_list("pk", flat=True)
            .first()
        )
        if owner is None:
            return command
        logger.warning(
            "Stripe customer %s already belongs to account %s; "
            "not linking it to account %s",
            command.customer_id,
            owner,
            command.account_id,
        )
        return replace(command, customer_id=None)

    def _apply(self, account_id, transition, *, ledger=None) -> MembershipResult:
        with transaction.atomic():
            user = self._lock(account_id)
            return self._run(user, transition, ledger=ledger)

    def _run(self, user, transition, *, ledger=None) -> MembershipResult:
        if ledger is not None and not self._append(user, ledger):
            logger.info(
                "Duplicate %s payment %s for account %s; skipping",
                ledger.processor,
                ledger.reference,
                user.pk,
            )
            return self._result(user, (), Outcome.DUPLICATE)

        previous_status = user.subscription_status
        result = transition(MembershipState.from_user(user))
        if result.outcome != Outcome.APPLIED:
            logger.info(
                "Membership event for account %s not applied: %s",
                user.pk,
                result.outcome.value,
            )
            return self._result(user, (), result.outcome)

        changed = result.state.apply_to(user)
        if changed:
            user.save(update_fields=changed)
        if previous_status != user.subscription_status:
            logger.info(
                "Account %s membership %s -> %s (%s/%s installments)",
                user.pk,
                previous_status,
                user.subscription_status,
                user.installments_paid,
                user.installments_required,
            )
        return self._result(user, result.effects, Outcome.APPLIED)

    def _append(self, user, entry: LedgerEntry) -> bool:
        """Record a ledger row; False when the reference is already taken."""
        already_recorded = (
            Transaction.objects.for_reference(entry.processor, entry.reference)
            .filter(status=entry.status)
            .exists()
        )
        if already_recorded:
            return False
        try:
            with transaction.atomic():
                Transaction.objects.create(
                    user=user,
                    amount=entry.amount,
                    currency=entry.currency.lower(),
                    status=entry.status,
                    kind=entry.kind,
                    processor=entry.processor,
                    processor_reference=entry.reference,
                    stripe_subscription_id=entry.subscription_id,
                    closer=entry.closer,
                )
        except IntegrityError:
            # A concurrent delivery of the same event won the insert
            return False
        return True

    def _lock(self, account_id) -> User:
        user_model = get_user_model()
        try:
            return user_model.objects.select_for_update().get(pk=account_id)
        except user_model.DoesNotExist as e:
            msg = f"Account {account_id} does not exist"
            raise AccountNotFound(msg) from e

    def _result(self, user, effects, outcome) -> MembershipResult:
        return MembershipResult(
            projection=AccountProjection.from_user(user),
            effects=tuple(effects),
            outcome=outcome,
        )

"""
Pure membership transitions.

Every function here takes the current MembershipState and a command and
returns a Transition: the next state, the effects to perform, and an
Outcome. Nothing in this module reads the database or calls a processor,
so the rules can be exercised directly in tests.

Two rules are applied at the end of every state-changing transition
(see settle()):

- Reaching the installment goal always means LIFETIME_ACCESS.
- LIFETIME_ACCESS never carries a Stripe subscription or a period end.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from academie.billing.commands import UNSET
from academie.billing.constants import DEFAULT_RENEWAL_DAYS
from academie.billing.constants import RENEWABLE_STATUSES
from academie.billing.constants import MembershipStatus
from academie.billing.constants import NotificationKind
from academie.billing.constants import PaymentProcessor
from academie.billing.effects import CancelRecurringSubscription
from academie.billing.effects import NotifyAccount

if TYPE_CHECKING:
    from datetime import datetime

    from academie.billing.commands import ManualOverride
    from academie.billing.commands import MarkLapsed
    from academie.billing.commands import RecordAddOnPurchase
    from academie.billing.commands import RecordPaymentReversal
    from academie.billing.commands import RecordSuccessfulCharge
    from academie.billing.commands import RecurringSubscriptionEnded
    from academie.billing.commands import RecurringSubscriptionObserved
    from academie.billing.commands import SelectInstallmentPlan


class Outcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"  # Same processor reference already recorded
    STALE = "stale"  # Event for a subscription the account moved on from
    LIFETIME_LOCKED = "lifetime_locked"  # Lifetime members ignore subscription events
    IGNORED = "ignored"  # Nothing to do for this account


# Stripe subscription status -> membership status
PROCESSOR_STATUS_MAP = {
    "trialing": MembershipStatus.TRIALING,
    "active": MembershipStatus.ACTIVE,
    "past_due": MembershipStatus.PAST_DUE,
    "canceled": MembershipStatus.CANCELED,
    "unpaid": MembershipStatus.CANCELED,
    "incomplete_expired": MembershipStatus.CANCELED,
    "incomplete": MembershipStatus.INCOMPLETE,
}


def map_processor_status(raw_status: str | None) -> MembershipStatus:
    """Map a processor subscription status; unknown values are INCOMPLETE."""
    key = (raw_status or "").strip().lower()
    return PROCESSOR_STATUS_MAP.get(key, MembershipStatus.INCOMPLETE)


@dataclass(frozen=True)
class MembershipState:
    status: str = MembershipStatus.INCOMPLETE
    installments_paid: int = 0
    installments_required: int = 1
    current_period_end: datetime | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    hotmart_transaction_code: str | None = None

    @classmethod
    def from_user(cls, user) -> MembershipState:
        return cls(
            status=user.subscription_status,
            installments_paid=user.installments_paid,
            installments_required=user.installments_required,
            current_period_end=user.current_period_end,
            stripe_customer_id=user.stripe_customer_id,
            stripe_subscription_id=user.stripe_subscription_id,
            hotmart_transaction_code=user.hotmart_transaction_code,
        )

    def apply_to(self, user) -> list[str]:
        """Copy this state onto user and return the fields that changed."""
        changed = []
        for name, value in self._as_user_fields().items():
            if getattr(user, name) != value:
                setattr(user, name, value)
                changed.append(name)
        return changed

    def _as_user_fields(self) -> dict:
        return {
            "subscription_status": self.status,
            "installments_paid": self.installments_paid,
            "installments_required": self.installments_required,
            "current_period_end": self.current_period_end,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "hotmart_transaction_code": self.hotmart_transaction_code,
        }

    @property
    def reached_goal(self) -> bool:
        return 0 < self.installments_required <= self.installments_paid

    @property
    def is_lifetime(self) -> bool:
        return self.status == MembershipStatus.LIFETIME_ACCESS


@dataclass(frozen=True)
class Transition:
    state: MembershipState
    effects: tuple = field(default_factory=tuple)
    outcome: Outcome = Outcome.APPLIED


def settle(
    before: MembershipState,
    after: MembershipState,
    account_id: int,
    *,
    charged_subscription_id: str | None = None,
    amount_minor: int | None = None,
    currency: str | None = None,
) -> tuple[MembershipState, list]:
    """
    Enforce the goal and lifetime rules on a proposed state.

    Returns the corrected state plus any cancel or notification effects the
    correction implies. A subscription that just produced a charge for a
    lifetime member is cancelled along with any linked one.
    """
    effects = []
    if after.reached_goal and not after.is_lifetime:
        after = replace(after, status=MembershipStatus.LIFETIME_ACCESS)
    if after.is_lifetime:
        to_cancel = [after.stripe_subscription_id, charged_subscription_id]
        for subscription_id in dict.fromkeys(sid for sid in to_cancel if sid):
            effects.append(CancelRecurringSubscription(account_id, subscription_id))
        after = replace(after, stripe_subscription_id=None, current_period_end=None)
        if not before.is_lifetime:
            effects.append(
                NotifyAccount(
                    account_id,
                    NotificationKind.LIFETIME_REACHED,
                    amount_minor=amount_minor,
                    currency=currency,
                ),
            )
    return after, effects


def _past_due_notice(before, after, account_id) -> list:
    if (
        after.status == MembershipStatus.PAST_DUE
        and before.status != MembershipStatus.PAST_DUE
    ):
        return [NotifyAccount(account_id, NotificationKind.PAST_DUE)]
    return []


def _with_transaction_code(state, processor, reference) -> MembershipState:
    if processor == PaymentProcessor.HOTMART:
        return replace(state, hotmart_transaction_code=reference)
    return state


def record_charge(
    state: MembershipState,
    command: RecordSuccessfulCharge,
    account_id: int,
) -> Transition:
    """
    Apply a successful charge that has already passed the duplicate check.

    Recurring installments bump the counter and leave the status to the
    subscription events unless the goal is reached. A one-shot payment
    always lands on lifetime access with 1/1 installments.
    """
    if command.is_recurring_installment:
        after = replace(state, installments_paid=state.installments_paid + 1)
        effects = [
            NotifyAccount(
                account_id,
                NotificationKind.INSTALLMENT_PAID,
                amount_minor=command.amount_minor,
                currency=command.currency,
            ),
        ]
    else:
        after = replace(
            state,
            status=MembershipStatus.LIFETIME_ACCESS,
            installments_paid=1,
            installments_required=1,
        )
        effects = []
    after = _with_transaction_code(
        after,
        command.processor,
        command.processor_reference,
    )
    after, settled = settle(
        state,
        after,
        account_id,
        charged_subscription_id=command.subscription_id,
        amount_minor=command.amount_minor,
        currency=command.currency,
    )
    return Transition(after, tuple(effects + settled))


def _subscription_guard(
    state: MembershipState,
    subscription_id: str,
    *,
    replaces_link: bool = False,
) -> Outcome | None:
    if state.is_lifetime:
        return Outcome.LIFETIME_LOCKED
    linked = state.stripe_subscription_id
    if linked and linked != subscription_id and not replaces_link:
        return Outcome.STALE
    return None


def observe_subscription(
    state: MembershipState,
    command: RecurringSubscriptionObserved,
    account_id: int,
) -> Transition:
    blocked = _subscription_guard(
        state,
        command.subscription_id,
        replaces_link=command.is_new_subscription,
    )
    if blocked:
        return Transition(state, outcome=blocked)

    after = replace(
        state,
        status=map_processor_status(command.raw_status),
        stripe_subscription_id=command.subscription_id,
        current_period_end=command.cancel_at or command.period_end,
    )
    if command.customer_id:
        after = replace(after, stripe_customer_id=command.customer_id)
    # The plan size is copied once, when the first subscription attaches
    first_link = not state.stripe_subscription_id and state.installments_paid == 0
    if command.installments_meta and first_link:
        after = replace(after, installments_required=command.installments_meta)

    after, settled = settle(state, after, account_id)
    effects = _past_due_notice(state, after, account_id) + settled
    return Transition(after, tuple(effects))


def end_subscription(
    state: MembershipState,
    command: RecurringSubscriptionEnded,
    account_id: int,
) -> Transition:
    blocked = _subscription_guard(state, command.subscription_id)
    if blocked:
        return Transition(state, outcome=blocked)
    after = replace(
        state,
        status=MembershipStatus.CANCELED,
        current_period_end=None,
    )
    after, settled = settle(state, after, account_id)
    return Transition(after, tuple(settled))


def manual_override(
    state: MembershipState,
    command: ManualOverride,
    account_id: int,
    now: datetime,
    renewal_days: int = DEFAULT_RENEWAL_DAYS,
) -> Transition:
    """
    Apply an admin correction.

    No duplicate or stale checks apply, but the goal and lifetime rules do.
    Recording an offline installment for a member without a Stripe
    subscription also renews their period and lifts PAST_DUE.
    """
    after = replace(
        state,
        status=command.target_status,
        installments_paid=command.installments_paid,
        installments_required=command.installments_required,
    )
    if command.current_period_end is not UNSET:
        after = replace(after, current_period_end=command.current_period_end)
    elif (
        command.installments_paid > state.installments_paid
        and not after.reached_goal
        and not state.stripe_subscription_id
    ):
        start = max(state.current_period_end or now, now)
        after = replace(
            after,
            current_period_end=start + timedelta(days=renewal_days),
        )
        if (
            state.status == MembershipStatus.PAST_DUE
            and command.target_status == MembershipStatus.PAST_DUE
        ):
            after = replace(after, status=command.paying_status)

    after, settled = settle(state, after, account_id)
    return Transition(after, tuple(settled))


def record_add_on(
    state: MembershipState,
    command: RecordAddOnPurchase,
    account_id: int,
) -> Transition:
    after = _with_transaction_code(
        state,
        command.processor,
        command.processor_reference,
    )
    if state.status == MembershipStatus.INCOMPLETE:
        after = replace(
            after,
            status=MembershipStatus.SMMA_ONLY,
            installments_required=0,
        )
    effects = [
        NotifyAccount(
            account_id,
            NotificationKind.PURCHASE_CONFIRMED,
            amount_minor=command.amount_minor,
            currency=command.currency,
        ),
    ]
    after, settled = settle(state, after, account_id)
    return Transition(after, tuple(effects + settled))


def reverse_payment(
    state: MembershipState,
    command: RecordPaymentReversal,
    account_id: int,
) -> Transition:
    """Revoke access after a refund or chargeback of a recorded payment."""
    after = replace(
        state,
        status=MembershipStatus.CANCELED,
        installments_paid=max(state.installments_paid - 1, 0),
        current_period_end=None,
    )
    after, settled = settle(state, after, account_id)
    return Transition(after, tuple(settled))


def select_plan(
    state: MembershipState,
    command: SelectInstallmentPlan,
    account_id: int,
) -> Transition:
    if state.is_lifetime:
        return Transition(state, outcome=Outcome.LIFETIME_LOCKED)
    # Only a charge may complete a plan
    if state.installments_paid >= command.installments_required:
        return Transition(state, outcome=Outcome.IGNORED)
    after = replace(state, installments_required=command.installments_required)
    after, settled = settle(state, after, account_id)
    return Transition(after, tuple(settled))


def mark_lapsed(
    state: MembershipState,
    command: MarkLapsed,
    account_id: int,
) -> Transition:
    lapsed = (
        state.status in RENEWABLE_STATUSES
        and state.current_period_end is not None
        and state.current_period_end < command.as_of
    )
    if not lapsed:
        return Transition(state, outcome=Outcome.IGNORED)
    after = replace(state, status=MembershipStatus.PAST_DUE)
    return Transition(after, tuple(_past_due_notice(state, after, account_id)))

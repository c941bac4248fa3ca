"""
Typed inputs to the membership state machine.

Webhook payloads and admin requests are translated into one of these
before anything touches an account. account_id may be None while an
ingestor is still resolving which account an event belongs to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from academie.billing.constants import MembershipStatus
from academie.billing.constants import TransactionStatus

if TYPE_CHECKING:
    from datetime import datetime


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


# Marks "leave current_period_end alone" on a manual override
UNSET = _Unset()


@dataclass(frozen=True)
class RecordSuccessfulCharge:
    account_id: int | None
    amount_minor: int
    currency: str
    processor: str
    processor_reference: str
    is_recurring_installment: bool
    subscription_id: str | None = None
    closer: str = ""


@dataclass(frozen=True)
class RecurringSubscriptionObserved:
    account_id: int | None
    subscription_id: str
    raw_status: str
    period_end: datetime | None
    cancel_at: datetime | None = None
    installments_meta: int | None = None
    customer_id: str | None = None
    # A freshly created subscription replaces whatever was linked before
    is_new_subscription: bool = False


@dataclass(frozen=True)
class RecurringSubscriptionEnded:
    account_id: int | None
    subscription_id: str


@dataclass(frozen=True)
class ManualOverride:
    account_id: int | None
    target_status: str
    installments_paid: int
    installments_required: int
    current_period_end: datetime | None | _Unset = UNSET
    paying_status: str = MembershipStatus.ACTIVE


@dataclass(frozen=True)
class RecordAddOnPurchase:
    account_id: int | None
    amount_minor: int
    currency: str
    processor: str
    processor_reference: str


@dataclass(frozen=True)
class RecordPaymentReversal:
    account_id: int | None
    processor: str
    processor_reference: str
    reversal_status: str = TransactionStatus.REFUNDED


@dataclass(frozen=True)
class SelectInstallmentPlan:
    account_id: int | None
    installments_required: int


@dataclass(frozen=True)
class MarkLapsed:
    account_id: int | None
    as_of: datetime


Command = (
    RecordSuccessfulCharge
    | RecurringSubscriptionObserved
    | RecurringSubscriptionEnded
    | ManualOverride
    | RecordAddOnPurchase
    | RecordPaymentReversal
    | SelectInstallmentPlan
    | MarkLapsed
)

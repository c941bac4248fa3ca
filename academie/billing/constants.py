"""
Billing constants for installment memberships.

These enums define the membership lifecycle, the payment processors we
reconcile against, and the shapes of ledger entries. MembershipStatus
values are stored on the user row and are the single source of truth for
what a member may access.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class MembershipStatus(models.TextChoices):
    """
    Membership lifecycle states.

    Typical flow for an installment plan:
        INCOMPLETE → ACTIVE (subscription starts)
        ACTIVE → PAST_DUE (payment failed) → ACTIVE (retry succeeds)
        ACTIVE → LIFETIME_ACCESS (final installment paid)
        ACTIVE → CANCELED (subscription ended before the goal)

    Pay-once purchases go straight from INCOMPLETE to LIFETIME_ACCESS.
    SMMA_ONLY accounts bought the add-on course and sit outside the main
    membership track.
    """

    INCOMPLETE = "INCOMPLETE", _("Incomplete")
    TRIALING = "TRIALING", _("Trial")
    ACTIVE = "ACTIVE", _("Active")
    PAST_DUE = "PAST_DUE", _("Past Due")
    CANCELED = "CANCELED", _("Canceled")
    LIFETIME_ACCESS = "LIFETIME_ACCESS", _("Lifetime Access")
    SMMA_ONLY = "SMMA_ONLY", _("SMMA Only")


class PaymentProcessor(models.TextChoices):
    STRIPE = "stripe", _("Stripe")
    HOTMART = "hotmart", _("Hotmart")
    MANUAL = "manual", _("Manual")


class TransactionStatus(models.TextChoices):
    """Only SUCCEEDED rows count toward installment progress."""

    SUCCEEDED = "succeeded", _("Succeeded")
    REFUNDED = "refunded", _("Refunded")
    CHARGEBACK = "chargeback", _("Chargeback")


class TransactionKind(models.TextChoices):
    INSTALLMENT = "installment", _("Installment")
    FULL_PAYMENT = "full_payment", _("Full payment")
    ADD_ON = "add_on", _("Add-on purchase")
    BACKFILL = "backfill", _("Backfilled payment")
    REVERSAL = "reversal", _("Reversal")


class NotificationKind(models.TextChoices):
    INSTALLMENT_PAID = "installment_paid", _("Installment paid")
    LIFETIME_REACHED = "lifetime_reached", _("Lifetime access reached")
    PAST_DUE = "past_due", _("Payment past due")
    PURCHASE_CONFIRMED = "purchase_confirmed", _("Purchase confirmed")
    ACCOUNT_SETUP = "account_setup", _("Account setup")


# Statuses that unlock the member area
ACCESS_GRANTING_STATUSES = frozenset(
    {
        MembershipStatus.ACTIVE,
        MembershipStatus.TRIALING,
        MembershipStatus.LIFETIME_ACCESS,
    },
)

# Statuses a recurring period can lapse out of
RENEWABLE_STATUSES = frozenset(
    {
        MembershipStatus.ACTIVE,
        MembershipStatus.TRIALING,
    },
)

# Stripe price metadata used to tag membership offers
MEMBERSHIP_PRICE_TYPE = "membership_tier"

# Stripe payment intent metadata marking a pay-once membership purchase
MEMBERSHIP_FULL_PAYMENT_TYPE = "MEMBERSHIP_FULL"

# Default renewal window for manually tracked payers
DEFAULT_RENEWAL_DAYS = 30

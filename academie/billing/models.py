"""
Billing models for installment memberships.

Membership state itself lives on the user row (academie.users.User). This
module holds the append-only payment ledger.

Relationship: User ──1:N── Transaction
"""

from django.conf import settings
from django.db import models
from model_utils.models import TimeStampedModel

from academie.billing.constants import PaymentProcessor
from academie.billing.constants import TransactionKind
from academie.billing.constants import TransactionStatus


class ImmutableLedgerError(Exception):
    """Raised when code tries to change or remove a ledger row."""


class TransactionQuerySet(models.QuerySet):
    def succeeded(self):
        return self.filter(status=TransactionStatus.SUCCEEDED)

    def for_reference(self, processor: str, reference: str):
        return self.filter(processor=processor, processor_reference=reference)


class Transaction(TimeStampedModel):
    """
    One payment event as reported by a processor or recorded by an admin.

    The (processor, processor_reference, status) constraint is what makes
    webhook replays harmless: a second insert for the same charge fails
    and the state machine treats it as a duplicate.

    Rows are never updated or deleted.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount in major currency units.",
    )
    currency = models.CharField(max_length=3, help_text="Lower-case ISO 4217 code.")
    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.SUCCEEDED,
    )
    kind = models.CharField(
        max_length=20,
        choices=TransactionKind.choices,
        help_text="What this payment was for.",
    )
    processor = models.CharField(max_length=20, choices=PaymentProcessor.choices)
    processor_reference = models.CharField(
        max_length=255,
        help_text="Processor-side id (invoice, payment intent, Hotmart transaction).",
    )
    stripe_subscription_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Subscription the charge belonged to, if any.",
    )
    closer = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Sales rep credited with this payment.",
    )

    objects = TransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created"]
        constraints = [
            models.UniqueConstraint(
                fields=["processor", "processor_reference", "status"],
                name="billing_transaction_unique_reference",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "status"], name="billing_tra_user_id_5d0c1e_idx"),
            models.Index(fields=["closer"], name="billing_tra_closer_8a41b2_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.processor}:{self.processor_reference} ({self.status})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            msg = "Transactions are append-only."
            raise ImmutableLedgerError(msg)
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        msg = "Transactions are append-only."
        raise ImmutableLedgerError(msg)

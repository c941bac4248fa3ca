import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.conf import settings
from django.db import migrations
from django.db import models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created",
                    model_utils.fields.AutoCreatedField(
                        default=django.utils.timezone.now,
                        editable=False,
                        verbose_name="created",
                    ),
                ),
                (
                    "modified",
                    model_utils.fields.AutoLastModifiedField(
                        default=django.utils.timezone.now,
                        editable=False,
                        verbose_name="modified",
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount in major currency units.",
                        max_digits=12,
                    ),
                ),
                (
                    "currency",
                    models.CharField(help_text="Lower-case ISO 4217 code.", max_length=3),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("succeeded", "Succeeded"),
                            ("refunded", "Refunded"),
                            ("chargeback", "Chargeback"),
                        ],
                        default="succeeded",
                        max_length=20,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("installment", "Installment"),
                            ("full_payment", "Full payment"),
                            ("add_on", "Add-on purchase"),
                            ("backfill", "Backfilled payment"),
                            ("reversal", "Reversal"),
                        ],
                        help_text="What this payment was for.",
                        max_length=20,
                    ),
                ),
                (
                    "processor",
                    models.CharField(
                        choices=[
                            ("stripe", "Stripe"),
                            ("hotmart", "Hotmart"),
                            ("manual", "Manual"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "processor_reference",
                    models.CharField(
                        help_text=(
                            "Processor-side id (invoice, payment intent, "
                            "Hotmart transaction)."
                        ),
                        max_length=255,
                    ),
                ),
                (
                    "stripe_subscription_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Subscription the charge belonged to, if any.",
                        max_length=255,
                    ),
                ),
                (
                    "closer",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Sales rep credited with this payment.",
                        max_length=255,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created"],
                "indexes": [
                    models.Index(
                        fields=["user", "status"],
                        name="billing_tra_user_id_5d0c1e_idx",
                    ),
                    models.Index(fields=["closer"], name="billing_tra_closer_8a41b2_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("processor", "processor_reference", "status"),
                        name="billing_transaction_unique_reference",
                    ),
                ],
            },
        ),
    ]

import django.db.models.functions.text
import django.utils.timezone
from django.db import migrations
from django.db import models

import academie.users.models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="User",
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
                ("password", models.CharField(max_length=128, verbose_name="password")),
                (
                    "last_login",
                    models.DateTimeField(blank=True, null=True, verbose_name="last login"),
                ),
                (
                    "is_superuser",
                    models.BooleanField(
                        default=False,
                        help_text=(
                            "Designates that this user has all permissions without "
                            "explicitly assigning them."
                        ),
                        verbose_name="superuser status",
                    ),
                ),
                (
                    "is_staff",
                    models.BooleanField(
                        default=False,
                        help_text="Designates whether the user can log into this admin site.",
                        verbose_name="staff status",
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text=(
                            "Designates whether this user should be treated as active. "
                            "Unselect this instead of deleting accounts."
                        ),
                        verbose_name="active",
                    ),
                ),
                (
                    "date_joined",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        verbose_name="date joined",
                    ),
                ),
                (
                    "name",
                    models.CharField(blank=True, max_length=255, verbose_name="Name of User"),
                ),
                (
                    "email",
                    models.EmailField(max_length=254, unique=True, verbose_name="email address"),
                ),
                (
                    "phone",
                    models.CharField(blank=True, default="", max_length=32, verbose_name="Phone"),
                ),
                (
                    "subscription_status",
                    models.CharField(
                        choices=[
                            ("INCOMPLETE", "Incomplete"),
                            ("TRIALING", "Trial"),
                            ("ACTIVE", "Active"),
                            ("PAST_DUE", "Past Due"),
                            ("CANCELED", "Canceled"),
                            ("LIFETIME_ACCESS", "Lifetime Access"),
                            ("SMMA_ONLY", "SMMA Only"),
                        ],
                        db_index=True,
                        default="INCOMPLETE",
                        help_text="Canonical membership status derived from billing events.",
                        max_length=32,
                    ),
                ),
                (
                    "installments_paid",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Successful installment charges recorded so far.",
                    ),
                ),
                (
                    "installments_required",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Installments needed to unlock lifetime access.",
                    ),
                ),
                (
                    "current_period_end",
                    models.DateTimeField(
                        blank=True,
                        help_text="End of the paid period. Empty means no expiry.",
                        null=True,
                    ),
                ),
                (
                    "stripe_customer_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe customer ID (cus_xxx).",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "stripe_subscription_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe subscription ID (sub_xxx) currently billing this member.",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "hotmart_transaction_code",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Last Hotmart transaction code seen for this member.",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "account_setup_token",
                    models.CharField(
                        blank=True,
                        help_text=(
                            "One-time token for setting a password on "
                            "payment-created accounts."
                        ),
                        max_length=64,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "groups",
                    models.ManyToManyField(
                        blank=True,
                        help_text=(
                            "The groups this user belongs to. A user will get all "
                            "permissions granted to each of their groups."
                        ),
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.group",
                        verbose_name="groups",
                    ),
                ),
                (
                    "user_permissions",
                    models.ManyToManyField(
                        blank=True,
                        help_text="Specific permissions for this user.",
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.permission",
                        verbose_name="user permissions",
                    ),
                ),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
                "abstract": False,
            },
            managers=[
                ("objects", academie.users.models.UserManager()),
            ],
        ),
        migrations.AddConstraint(
            model_name="user",
            constraint=models.UniqueConstraint(
                django.db.models.functions.text.Lower("email"),
                name="users_user_email_ci_unique",
            ),
        ),
    ]

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from django.contrib.auth.models import AbstractUser
from django.contrib.auth.models import UserManager as DjangoUserManager
from django.db import models
from django.db.models import F
from django.db.models import Q
from django.db.models.functions import Lower
from django.utils.translation import gettext_lazy as _

from academie.billing.constants import MembershipStatus
from academie.billing.constants import RENEWABLE_STATUSES

if TYPE_CHECKING:
    from datetime import datetime


def generate_setup_token() -> str:
    """One-time credential emailed to accounts created by a payment."""
    return secrets.token_hex(32)


class UserQuerySet(models.QuerySet):
    def lapsed(self, as_of: datetime) -> UserQuerySet:
        """
        Accounts whose recurring period ended without a renewal.

        Lifetime accounts never match because their period end is cleared.
        """
        return self.filter(
            subscription_status__in=RENEWABLE_STATUSES,
            current_period_end__isnull=False,
            current_period_end__lt=as_of,
        )

    def by_processor_linkage(
        self,
        *,
        customer_id: str | None = None,
        subscription_id: str | None = None,
        transaction_code: str | None = None,
    ) -> UserQuerySet:
        """Accounts linked to any of the given processor identities."""
        condition = Q()
        if customer_id:
            condition |= Q(stripe_customer_id=customer_id)
        if subscription_id:
            condition |= Q(stripe_subscription_id=subscription_id)
        if transaction_code:
            condition |= Q(hotmart_transaction_code=transaction_code)
        if not condition:
            return self.none()
        return self.filter(condition)

    def lifetime_candidates(self) -> UserQuerySet:
        """Accounts that reached their installment goal but are not lifetime."""
        return self.filter(
            installments_required__gt=0,
            installments_paid__gte=F("installments_required"),
        ).exclude(subscription_status=MembershipStatus.LIFETIME_ACCESS)


class UserManager(DjangoUserManager.from_queryset(UserQuerySet)):
    """Email-keyed manager; accounts have no username."""

    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            msg = "Users must have an email address"
            raise ValueError(msg)
        user = self.model(email=self.normalize_email(email).lower(), **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email=None, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email=None, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        if extra_fields.get("is_staff") is not True:
            msg = "Superuser must have is_staff=True."
            raise ValueError(msg)
        if extra_fields.get("is_superuser") is not True:
            msg = "Superuser must have is_superuser=True."
            raise ValueError(msg)
        return self._create_user(email, password, **extra_fields)

    def get_by_email(self, email: str) -> User | None:
        if not email:
            return None
        return self.filter(email__iexact=email.strip()).first()

    def create_from_payment(
        self,
        email: str,
        *,
        name: str = "",
        phone: str = "",
    ) -> User:
        """
        Create an account for a buyer we have never seen.

        The account has no usable password; the buyer sets one later with
        the setup token we email them.
        """
        user = self.model(
            email=self.normalize_email(email).strip().lower(),
            name=name,
            phone=phone,
            account_setup_token=generate_setup_token(),
        )
        user.set_unusable_password()
        user.save(using=self._db)
        return user


class User(AbstractUser):
    """
    Member account.

    Membership fields below are written only by the billing state machine
    (academie.billing.membership). Everything else treats them as read-only.
    """

    # First and last name do not cover name patterns around the globe
    name = models.CharField(_("Name of User"), blank=True, max_length=255)
    first_name = None  # type: ignore[assignment]
    last_name = None  # type: ignore[assignment]
    username = None  # type: ignore[assignment]
    email = models.EmailField(_("email address"), unique=True)
    phone = models.CharField(_("Phone"), max_length=32, blank=True, default="")

    subscription_status = models.CharField(
        max_length=32,
        choices=MembershipStatus.choices,
        default=MembershipStatus.INCOMPLETE,
        db_index=True,
        help_text=_("Canonical membership status derived from billing events."),
    )
    installments_paid = models.PositiveIntegerField(
        default=0,
        help_text=_("Successful installment charges recorded so far."),
    )
    installments_required = models.PositiveIntegerField(
        default=1,
        help_text=_("Installments needed to unlock lifetime access."),
    )
    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("End of the paid period. Empty means no expiry."),
    )
    stripe_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text=_("Stripe customer ID (cus_xxx)."),
    )
    stripe_subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text=_("Stripe subscription ID (sub_xxx) currently billing this member."),
    )
    hotmart_transaction_code = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text=_("Last Hotmart transaction code seen for this member."),
    )
    account_setup_token = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        unique=True,
        help_text=_("One-time token for setting a password on payment-created accounts."),
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                name="users_user_email_ci_unique",
            ),
        ]

    def __str__(self):
        return self.email

    @property
    def has_lifetime_access(self) -> bool:
        return self.subscription_status == MembershipStatus.LIFETIME_ACCESS

    @property
    def is_manually_tracked(self) -> bool:
        """True when no Stripe subscription bills this member."""
        return not self.stripe_subscription_id

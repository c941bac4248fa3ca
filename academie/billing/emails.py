"""
Email notifications for membership billing events.

This module sends email when:
- An installment is paid
- A member reaches lifetime access
- A subscription payment goes past due
- An add-on purchase is confirmed
- A processor purchase created a brand new account (password setup link)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.mail import send_mail
from django.utils.translation import gettext as _

from academie.billing.constants import NotificationKind

if TYPE_CHECKING:
    from academie.users.models import User

logger = logging.getLogger(__name__)


def get_site_url() -> str:
    return getattr(settings, "SITE_URL", "https://academie.example.com")


def format_amount(amount_minor: int | None, currency: str | None) -> str:
    if amount_minor is None:
        return ""
    amount = (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))
    return f"{amount} {(currency or '').upper()}".strip()


def build_setup_url(user: User) -> str:
    base = getattr(settings, "ACCOUNT_SETUP_URL", "") or f"{get_site_url()}/setup-account"
    return f"{base}?token={user.account_setup_token}"


def _compose(user: User, kind: str, amount: str) -> tuple[str, str] | None:
    greeting = _("Hi %(name)s,") % {"name": user.name or user.email}
    if kind == NotificationKind.INSTALLMENT_PAID:
        subject = _("Installment received")
        body = _(
            "We received your installment payment of %(amount)s. "
            "You have paid %(paid)s of %(required)s installments.",
        ) % {
            "amount": amount,
            "paid": user.installments_paid,
            "required": user.installments_required,
        }
    elif kind == NotificationKind.LIFETIME_REACHED:
        subject = _("You now have lifetime access")
        body = _(
            "Your membership is fully paid. You have lifetime access and "
            "will not be charged again.",
        )
    elif kind == NotificationKind.PAST_DUE:
        subject = _("Your membership payment is past due")
        body = _(
            "We could not collect your latest membership payment. "
            "Please update your payment method to keep your access.",
        )
    elif kind == NotificationKind.PURCHASE_CONFIRMED:
        subject = _("Purchase confirmed")
        body = _("Thanks for your purchase of %(amount)s.") % {"amount": amount}
    elif kind == NotificationKind.ACCOUNT_SETUP:
        if not user.account_setup_token:
            return None
        subject = _("Set up your account")
        body = _(
            "Your purchase created an account for you. Choose a password here:\n"
            "%(url)s",
        ) % {"url": build_setup_url(user)}
    else:
        return None
    return subject, f"{greeting}\n\n{body}\n\n{get_site_url()}\n"


def send_membership_email(
    user: User,
    kind: str,
    *,
    amount_minor: int | None = None,
    currency: str | None = None,
) -> bool:
    """
    Send the email for one billing notification.

    Returns:
        True if email was sent successfully, False otherwise.
    """
    if not user.email:
        logger.warning("Cannot send %s email: account %s has no email", kind, user.pk)
        return False

    composed = _compose(user, kind, format_amount(amount_minor, currency))
    if composed is None:
        logger.warning("No email template for %s (account %s)", kind, user.pk)
        return False
    subject, message = composed

    try:
        sent = send_mail(
            subject,
            message,
            getattr(settings, "DEFAULT_FROM_EMAIL", None),
            [user.email],
        )
    except Exception:
        logger.exception("Error sending %s email to account %s", kind, user.pk)
        return False

    if sent == 0:
        logger.warning("%s email to account %s was not sent", kind, user.pk)
        return False
    logger.info("Sent %s email to account %s", kind, user.pk)
    return True

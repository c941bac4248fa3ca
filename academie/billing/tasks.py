"""
Celery tasks for billing side effects and scheduled sweeps.

Side-effect tasks are queued by EffectDispatcher after a membership change
commits. They are best-effort: failures are logged and never retried into
the request that caused them.

Scheduled tasks wrap management commands (see academie.billing.schedules):
    sweep_lapsed_memberships        - Hourly
    reconcile_lifetime_memberships  - Daily at 3:30 AM
"""

import logging
from datetime import UTC
from datetime import datetime
from io import StringIO

from celery import shared_task
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import OperationalError

from academie.billing.emails import send_membership_email
from academie.billing.exceptions import ProcessorError
from academie.billing.exceptions import ProcessorObjectNotFound
from academie.billing.exceptions import UpstreamSideEffectFailure
from academie.billing.gateway import StripeGateway

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS = (
    OperationalError,
    ConnectionError,
    TimeoutError,
)


def _cancel(gateway, subscription_id: str) -> None:
    try:
        gateway.cancel_subscription(subscription_id)
    except ProcessorObjectNotFound:
        raise
    except ProcessorError as e:
        raise UpstreamSideEffectFailure(str(e)) from e


@shared_task(name="academie.billing.cancel_recurring_subscription", ignore_result=True)
def cancel_recurring_subscription(subscription_id: str, account_id: int | None = None) -> bool:
    """
    Cancel a Stripe subscription that no longer needs to bill.

    A failure leaves the member's access untouched; the worst case is one
    extra charge, which the ledger deduplicates if it is replayed.
    """
    try:
        _cancel(StripeGateway.from_settings(), subscription_id)
    except ProcessorObjectNotFound:
        logger.info(
            "Subscription %s for account %s already gone at Stripe",
            subscription_id,
            account_id,
        )
        return True
    except UpstreamSideEffectFailure as e:
        logger.warning(
            "Could not cancel subscription %s for account %s: %s",
            subscription_id,
            account_id,
            e,
        )
        return False
    logger.info("Cancelled subscription %s for account %s", subscription_id, account_id)
    return True


@shared_task(name="academie.billing.send_membership_notification", ignore_result=True)
def send_membership_notification(
    account_id: int,
    kind: str,
    amount_minor: int | None = None,
    currency: str | None = None,
) -> bool:
    user = get_user_model().objects.filter(pk=account_id).first()
    if user is None:
        logger.warning("Cannot send %s notification: account %s missing", kind, account_id)
        return False
    return send_membership_email(
        user,
        kind,
        amount_minor=amount_minor,
        currency=currency,
    )


def _run_management_command(command_name: str, *args: str) -> dict:
    out = StringIO()
    call_command(command_name, *args, stdout=out)
    return {
        "status": "completed",
        "command": command_name,
        "output": out.getvalue().strip(),
        "timestamp": datetime.now(tz=UTC).isoformat(),
    }


@shared_task(
    bind=True,
    name="academie.billing.sweep_lapsed_memberships",
    autoretry_for=RETRYABLE_EXCEPTIONS,
    max_retries=3,
    retry_backoff=60,
    retry_backoff_max=600,
    acks_late=True,
)
def sweep_lapsed_memberships(self) -> dict:
    """Move manually tracked members past their period end to PAST_DUE."""
    logger.info("Starting lapsed membership sweep (task_id=%s)", self.request.id)
    result = _run_management_command("sweep_lapsed_memberships")
    logger.info("Lapsed membership sweep completed: %s", result["output"])
    return result


@shared_task(
    bind=True,
    name="academie.billing.reconcile_lifetime_memberships",
    autoretry_for=RETRYABLE_EXCEPTIONS,
    max_retries=3,
    retry_backoff=60,
    retry_backoff_max=600,
    acks_late=True,
)
def reconcile_lifetime_memberships(self) -> dict:
    """Grant lifetime access to members whose counters already reached the goal."""
    logger.info("Starting lifetime reconciliation (task_id=%s)", self.request.id)
    result = _run_management_command("reconcile_lifetime_memberships")
    logger.info("Lifetime reconciliation completed: %s", result["output"])
    return result

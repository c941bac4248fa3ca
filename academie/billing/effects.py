"""
Side effects requested by membership transitions.

Transitions never talk to Stripe or send email themselves. They return a
list of these requests, and the caller hands the list to an
EffectDispatcher, which queues one Celery task per effect once the
database transaction commits. A failing task is logged and never undoes
the membership change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial

from django.db import transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancelRecurringSubscription:
    account_id: int
    subscription_id: str


@dataclass(frozen=True)
class NotifyAccount:
    account_id: int
    kind: str
    amount_minor: int | None = None
    currency: str | None = None


Effect = CancelRecurringSubscription | NotifyAccount


class EffectDispatcher:
    """Queue effects for delivery after the surrounding transaction commits."""

    def dispatch(self, effects) -> None:
        for effect in effects:
            transaction.on_commit(partial(self.send, effect), robust=True)

    def send(self, effect: Effect) -> None:
        from academie.billing import tasks

        if isinstance(effect, CancelRecurringSubscription):
            tasks.cancel_recurring_subscription.delay(
                effect.subscription_id,
                account_id=effect.account_id,
            )
        elif isinstance(effect, NotifyAccount):
            tasks.send_membership_notification.delay(
                effect.account_id,
                effect.kind,
                amount_minor=effect.amount_minor,
                currency=effect.currency,
            )
        else:
            logger.warning("Unknown billing effect %r", effect)

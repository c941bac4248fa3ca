"""
Management command to move lapsed memberships to PAST_DUE.

Members paying outside Stripe (Hotmart, bank transfer, admin overrides)
have no subscription events to tell us their period ended. This sweep
finds ACTIVE or TRIALING accounts whose current_period_end is in the past
and marks them PAST_DUE through the membership state machine.

Stripe-billed members are skipped by default since Stripe reports their
status itself.

Usage:
    python manage.py sweep_lapsed_memberships
    python manage.py sweep_lapsed_memberships --dry-run
    python manage.py sweep_lapsed_memberships --include-subscribed
"""

import logging

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from academie.billing.commands import MarkLapsed
from academie.billing.effects import EffectDispatcher
from academie.billing.membership import MembershipStateMachine

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Mark memberships whose paid period has ended as PAST_DUE."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List lapsed accounts without changing them",
        )
        parser.add_argument(
            "--include-subscribed",
            action="store_true",
            help="Also sweep accounts that still have a Stripe subscription",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        now = timezone.now()

        lapsed = get_user_model().objects.lapsed(now)
        if not options["include_subscribed"]:
            lapsed = lapsed.filter(stripe_subscription_id__isnull=True)
        account_ids = list(lapsed.order_by("pk").values_list("pk", flat=True))

        self.stdout.write("=" * 60)
        self.stdout.write("Lapsed membership sweep")
        self.stdout.write("=" * 60)

        if not account_ids:
            self.stdout.write(self.style.SUCCESS("No lapsed memberships found."))
            return

        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f"[DRY RUN] Would mark {len(account_ids)} account(s) PAST_DUE: "
                    f"{', '.join(str(pk) for pk in account_ids)}",
                ),
            )
            return

        machine = MembershipStateMachine()
        dispatcher = EffectDispatcher()
        marked = 0
        for account_id in account_ids:
            result = machine.mark_lapsed(MarkLapsed(account_id=account_id, as_of=now))
            dispatcher.dispatch(result.effects)
            if result.applied:
                marked += 1
                self.stdout.write(f"  account {account_id}: PAST_DUE")

        logger.info("Lapsed membership sweep marked %d account(s)", marked)
        self.stdout.write(
            self.style.SUCCESS(f"Marked {marked} account(s) PAST_DUE."),
        )

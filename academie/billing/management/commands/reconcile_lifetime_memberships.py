"""
Management command to grant lifetime access to fully paid members.

Accounts whose installments_paid already reached installments_required
but are not LIFETIME_ACCESS (for example after a bulk data import) are
pushed through a manual override so the lifetime rules run: the status
flips and any linked Stripe subscription is cancelled.

Usage:
    python manage.py reconcile_lifetime_memberships
    python manage.py reconcile_lifetime_memberships --dry-run
"""

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from academie.billing.constants import MembershipStatus
from academie.billing.reconciliation import ReconciliationService


class Command(BaseCommand):
    help = "Grant lifetime access to accounts that reached their installment goal."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List affected accounts without changing them",
        )

    def handle(self, *args, **options):
        candidates = list(
            get_user_model()
            .objects.lifetime_candidates()
            .order_by("pk")
            .values_list("pk", "installments_paid", "installments_required"),
        )

        self.stdout.write("=" * 60)
        self.stdout.write("Lifetime membership reconciliation")
        self.stdout.write("=" * 60)

        if not candidates:
            self.stdout.write(self.style.SUCCESS("All fully paid members have lifetime access."))
            return

        if options["dry_run"]:
            for account_id, paid, required in candidates:
                self.stdout.write(f"  account {account_id}: {paid}/{required}")
            self.stdout.write(
                self.style.WARNING(
                    f"[DRY RUN] Would grant lifetime access to {len(candidates)} account(s).",
                ),
            )
            return

        service = ReconciliationService()
        for account_id, paid, required in candidates:
            service.apply_override(
                account_id,
                target_status=MembershipStatus.LIFETIME_ACCESS,
                installments_paid=paid,
                installments_required=required,
            )
            self.stdout.write(f"  account {account_id}: LIFETIME_ACCESS ({paid}/{required})")

        self.stdout.write(
            self.style.SUCCESS(f"Granted lifetime access to {len(candidates)} account(s)."),
        )

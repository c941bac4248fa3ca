"""
Management command to register the billing schedules with Celery Beat.

Reads academie.billing.schedules.SCHEDULED_TASKS and creates or updates
one django_celery_beat PeriodicTask per entry.

Usage:
    python manage.py sync_schedules
    python manage.py sync_schedules --dry-run
    python manage.py sync_schedules --list
"""

import logging

from django.core.management.base import BaseCommand
from django_celery_beat.models import CrontabSchedule
from django_celery_beat.models import PeriodicTask

from academie.billing.schedules import SCHEDULED_TASKS
from academie.billing.schedules import parse_cron

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Sync scheduled billing tasks to Celery Beat"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without making changes",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            dest="list_tasks",
            help="List all registered scheduled tasks",
        )

    def handle(self, *args, **options):
        if options["list_tasks"]:
            self._list_tasks()
            return
        self._sync_celery_beat(dry_run=options["dry_run"])

    def _list_tasks(self):
        self.stdout.write(
            self.style.SUCCESS(f"Registered Scheduled Tasks ({len(SCHEDULED_TASKS)} total)"),
        )
        self.stdout.write("=" * 60)
        for task in SCHEDULED_TASKS:
            status = "enabled" if task.enabled else "disabled"
            self.stdout.write(f"{task.name} ({task.id}) [{status}]")
            self.stdout.write(f"  Schedule:    {task.schedule_cron}")
            self.stdout.write(f"  Celery:      {task.celery_task}")
            if task.description:
                self.stdout.write(f"  Description: {task.description}")

    def _sync_celery_beat(self, *, dry_run: bool):
        self.stdout.write(
            self.style.SUCCESS(f"Syncing {len(SCHEDULED_TASKS)} tasks to Celery Beat..."),
        )
        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN - no changes will be made"))

        created_count = 0
        updated_count = 0
        for task in SCHEDULED_TASKS:
            cron_parts = parse_cron(task.schedule_cron)
            if dry_run:
                self.stdout.write(
                    f"  Would create/update {task.name}: {task.celery_task} "
                    f"({task.schedule_cron})",
                )
                continue

            schedule, _ = CrontabSchedule.objects.get_or_create(**cron_parts)
            periodic_task, created = PeriodicTask.objects.update_or_create(
                name=task.name,
                defaults={
                    "task": task.celery_task,
                    "crontab": schedule,
                    "interval": None,
                    "enabled": task.enabled,
                    "description": task.description,
                },
            )
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"  Created: {periodic_task.name}"))
            else:
                updated_count += 1
                self.stdout.write(f"  Updated: {periodic_task.name}")

        if not dry_run:
            logger.info(
                "Synced billing schedules: %d created, %d updated",
                created_count,
                updated_count,
            )
            self.stdout.write(
                self.style.SUCCESS(
                    f"Done! Created: {created_count}, Updated: {updated_count}",
                ),
            )

"""
Scheduled billing tasks.

Single source of truth for periodic membership maintenance. The
sync_schedules management command reads this registry and creates the
matching django_celery_beat PeriodicTask rows.

Usage:

    from academie.billing.schedules import SCHEDULED_TASKS

    for task in SCHEDULED_TASKS:
        print(f"{task.name}: {task.schedule_cron}")
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ScheduledTaskDefinition:
    id: str  # e.g. "sweep-lapsed-memberships"
    name: str  # PeriodicTask name
    celery_task: str  # Registered task name
    schedule_cron: str  # Standard 5-field cron expression
    description: str = ""
    enabled: bool = True


SCHEDULED_TASKS: tuple[ScheduledTaskDefinition, ...] = (
    ScheduledTaskDefinition(
        id="sweep-lapsed-memberships",
        name="Sweep Lapsed Memberships",
        celery_task="academie.billing.sweep_lapsed_memberships",
        schedule_cron="15 * * * *",  # Hourly at :15
        description="Mark manually tracked members past their period end PAST_DUE",
    ),
    ScheduledTaskDefinition(
        id="reconcile-lifetime-memberships",
        name="Reconcile Lifetime Memberships",
        celery_task="academie.billing.reconcile_lifetime_memberships",
        schedule_cron="30 3 * * *",  # Daily at 3:30 AM
        description="Grant lifetime access to accounts that reached their goal",
    ),
)


def get_task(task_id: str) -> ScheduledTaskDefinition | None:
    return next((task for task in SCHEDULED_TASKS if task.id == task_id), None)


def parse_cron(cron_expr: str) -> dict[str, str]:
    """
    Parse a cron expression into django_celery_beat CrontabSchedule fields.

    Raises:
        ValueError: if the expression does not have 5 fields
    """
    cron_field_count = 5
    parts = cron_expr.split()
    if len(parts) != cron_field_count:
        msg = f"Invalid cron expression: {cron_expr}"
        raise ValueError(msg)

    return {
        "minute": parts[0],
        "hour": parts[1],
        "day_of_month": parts[2],
        "month_of_year": parts[3],
        "day_of_week": parts[4],
    }

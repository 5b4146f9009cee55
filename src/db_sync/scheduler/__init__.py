"""Cron parsing and scheduled sync jobs.

Usage:
    from db_sync.scheduler import Scheduler, next_run
"""

from db_sync.scheduler.cron import (
    CRON_PRESETS,
    CronExpression,
    describe_cron,
    next_run,
    validate_cron_expression,
)
from db_sync.scheduler.scheduler import RunStatus, ScheduledJob, Scheduler

__all__ = [
    "CRON_PRESETS",
    "CronExpression",
    "describe_cron",
    "next_run",
    "validate_cron_expression",
    "RunStatus",
    "ScheduledJob",
    "Scheduler",
]

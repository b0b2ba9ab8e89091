"""
APScheduler configuration and job scheduling for pgbackup.

Manages:
- Validation of the cron expression against the allowed interval window
- The recurring backup job
- Manual "run now" triggers
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger


logger = logging.getLogger(__name__)

MIN_INTERVAL = timedelta(minutes=5)
MAX_INTERVAL = timedelta(hours=24)

SCHEDULED_JOB_ID = 'scheduled_backup'


class ScheduleError(ValueError):
    """Raised when a schedule expression is rejected."""
    pass


class InvalidScheduleError(ScheduleError):
    """The expression is not a valid cron expression."""
    pass


class ScheduleIntervalError(ScheduleError):
    """The expression fires more or less often than allowed."""

    def __init__(self, message: str, interval: timedelta):
        super().__init__(message)
        self.interval = interval


def parse_schedule(expression: str) -> CronTrigger:
    """
    Parse a standard five-field cron expression (UTC).

    Raises:
        InvalidScheduleError: If the expression cannot be parsed
    """
    try:
        return CronTrigger.from_crontab(expression, timezone='UTC')
    except ValueError as e:
        raise InvalidScheduleError(f"Invalid schedule {expression!r}: {e}")


def schedule_interval(trigger: CronTrigger, now: Optional[datetime] = None) -> timedelta:
    """
    Gap between the first two fire times after now.

    Raises:
        InvalidScheduleError: If the trigger does not fire twice in the future
    """
    if now is None:
        now = datetime.now(timezone.utc)

    first = trigger.get_next_fire_time(None, now)
    second = trigger.get_next_fire_time(first, first) if first else None
    if first is None or second is None:
        raise InvalidScheduleError("Schedule does not fire repeatedly")

    return second - first


def validate_schedule(expression: str, now: Optional[datetime] = None) -> timedelta:
    """
    Check that an expression fires at most every 5 minutes and at least every 24 hours.

    Both bounds are inclusive.

    Args:
        expression: Cron expression
        now: Reference time (default: current UTC time)

    Returns:
        The schedule's interval

    Raises:
        InvalidScheduleError: If the expression cannot be parsed
        ScheduleIntervalError: If the interval is outside the allowed window
    """
    interval = schedule_interval(parse_schedule(expression), now)

    if interval < MIN_INTERVAL or interval > MAX_INTERVAL:
        raise ScheduleIntervalError(
            f"The schedule must be between 5 minutes and 24 hours (got {interval})",
            interval
        )

    return interval


class BackupScheduler:
    """
    Runs a callback on every occurrence of a cron expression.

    Jobs execute on a background thread pool; the caller is never blocked.
    """

    def __init__(self, expression: str, callback: Callable[[], object]):
        """
        Args:
            expression: Cron expression (validated with validate_schedule first)
            callback: Invoked on every trigger, e.g. BackupOrchestrator.run
        """
        self.expression = expression
        self.callback = callback
        self.scheduler = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self):
        """
        Register the recurring job and start the scheduler.

        Raises:
            InvalidScheduleError: If the expression cannot be parsed
        """
        if self.running:
            logger.info(f"Scheduler already running (state={self.scheduler.state})")
            return

        trigger = parse_schedule(self.expression)

        executors = {
            'default': ThreadPoolExecutor(max_workers=2)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending instances into one
            'max_instances': 1,  # Only one instance of a job at a time
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        }

        self.scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

        self.scheduler.add_job(
            func=self._execute_callback,
            trigger=trigger,
            id=SCHEDULED_JOB_ID,
            name=f"Backup ({self.expression})",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info(f"Scheduler started (state={self.scheduler.state})")

        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")

    def trigger_now(self):
        """
        Run the callback once, as soon as possible, on the scheduler's pool.

        Raises:
            RuntimeError: If the scheduler is not running
        """
        if not self.running:
            raise RuntimeError("Scheduler not running. Call start() first.")

        # No explicit id: every manual trigger gets a fresh job
        self.scheduler.add_job(
            func=self._execute_callback,
            trigger=DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=1)),
            name="Manual backup"
        )

        logger.info("Manually triggered backup")

    def stop(self, wait: bool = True):
        """Stop the scheduler, waiting for a running job by default."""
        if self.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def _execute_callback(self):
        """
        Wrapper for callbacks run by APScheduler.

        Exceptions are logged so the scheduler keeps firing.
        """
        try:
            self.callback()
        except Exception:
            logger.exception("Scheduled backup failed")

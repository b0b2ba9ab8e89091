"""
Command line interface for pgbackup.
"""
import logging
import signal
import sys
import threading
from datetime import datetime, timezone

import click

from pgbackup import __version__, configure_logging
from pgbackup.backup.executor import BackupOrchestrator
from pgbackup.backup.storage import StorageError
from pgbackup.config import Config, ConfigError
from pgbackup.scheduler import BackupScheduler, ScheduleError, parse_schedule, validate_schedule


logger = logging.getLogger(__name__)


def load_config(validate_cron: bool = True) -> Config:
    """
    Read the configuration and set up logging. Exits the process on invalid settings.
    :param validate_cron: also check SCHEDULE against the interval window
    :return: Config
    """
    try:
        config = Config.from_env()
    except ConfigError as e:
        configure_logging()
        logger.critical(str(e))
        sys.exit(1)

    configure_logging(config.log_level, config.log_dir)

    if validate_cron:
        try:
            interval = validate_schedule(config.schedule)
        except ScheduleError as e:
            logger.critical(str(e))
            sys.exit(1)
        logger.info(f'Schedule {config.schedule!r} accepted (interval {interval})')

    return config


def build_orchestrator(config: Config) -> BackupOrchestrator:
    try:
        return BackupOrchestrator.from_config(config)
    except StorageError as e:
        logger.critical(f'Failed to set up storage: {e}')
        sys.exit(1)


def wait_for_shutdown(scheduler: BackupScheduler):
    """
    Park the main thread until SIGINT/SIGTERM, then stop the scheduler.
    SIGUSR1 requests an immediate backup run.
    """
    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f'Received signal {signum}, shutting down')
        stop_event.set()

    def _handle_trigger(signum, frame):
        logger.info(f'Received signal {signum}, triggering a backup')
        scheduler.trigger_now()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGUSR1, _handle_trigger)

    while not stop_event.wait(60):
        pass

    scheduler.stop()


@click.group()
@click.version_option(__version__)
def main():
    """
    Scheduled PostgreSQL base/incremental backups to S3-compatible storage.
    All settings are read from environment variables.
    """


@main.command('run')
def run_command():
    """
    Run backups on the configured SCHEDULE until stopped.
    """
    config = load_config()
    orchestrator = build_orchestrator(config)

    scheduler = BackupScheduler(config.schedule, orchestrator.run)
    scheduler.start()
    wait_for_shutdown(scheduler)


@main.command('backup')
def backup_command():
    """
    Perform a single backup run now.
    Depending on the stored metadata this is a full or an incremental backup.
    """
    config = load_config(validate_cron=False)
    orchestrator = build_orchestrator(config)

    result = orchestrator.run()
    if not result.succeeded:
        click.secho(f'Backup {result.status}: {result.error_message or "another run is active"}',
                    fg='red', file=sys.stderr)
        sys.exit(1)

    click.secho(f'Backup stored as {result.snapshot_id}', fg='green')


@main.command('check-schedule')
@click.argument('expression')
def check_schedule_command(expression):
    """
    Check a cron EXPRESSION against the allowed interval (5 minutes to 24 hours).
    """
    try:
        interval = validate_schedule(expression)
    except ScheduleError as e:
        click.secho(str(e), fg='red', file=sys.stderr)
        sys.exit(1)

    next_run = parse_schedule(expression).get_next_fire_time(None, datetime.now(timezone.utc))
    click.secho(f'Valid schedule. Interval: {interval}', fg='green')
    click.echo(f'Next run: {next_run.isoformat()}')


if __name__ == '__main__':
    main()

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


class ConfigError(ValueError):
    """Raised when required settings are missing or invalid."""
    pass


REQUIRED_VARIABLES = (
    'DB_HOST',
    'DB_PORT',
    'POSTGRES_USER',
    'POSTGRES_PASSWORD',
    'S3_ACCESS_KEY',
    'S3_SECRET_KEY',
    'S3_REGION',
    'S3_ENDPOINT',
    'S3_BUCKET_NAME',
    'REMOTE_FOLDER',
    'SCHEDULE',
)

DEFAULT_STAGING_DIR = '/tmp/backups'
METADATA_FILENAME = 'metadata.json'


def _get(environ: Mapping[str, str], name: str, default: str = '') -> str:
    return (environ.get(name) or default).strip()


@dataclass(frozen=True)
class Config:
    """
    Immutable service configuration.

    Built once at startup with Config.from_env() and handed to the
    orchestrator and scheduler.
    """

    # Database
    db_host: str
    db_port: int
    db_user: str
    db_password: str = field(repr=False)

    # Object storage
    s3_access_key: str
    s3_secret_key: str = field(repr=False)
    s3_region: str
    s3_endpoint: str
    s3_bucket: str
    remote_folder: str

    # Scheduling
    schedule: str

    # Local
    staging_dir: str = DEFAULT_STAGING_DIR
    backup_timeout: int = 0
    pg_basebackup_bin: str = 'pg_basebackup'
    log_level: str = 'INFO'
    log_dir: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """
        Read configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Config instance

        Raises:
            ConfigError: If any required variable is blank or a value is invalid
        """
        if environ is None:
            environ = os.environ

        values = {name: _get(environ, name) for name in REQUIRED_VARIABLES}
        values['REMOTE_FOLDER'] = values['REMOTE_FOLDER'].strip('/').strip()
        values['S3_ENDPOINT'] = values['S3_ENDPOINT'].rstrip('/')

        problems = [f"{name} must not be empty" for name, value in values.items() if not value]

        db_port = 0
        if values['DB_PORT']:
            try:
                db_port = int(values['DB_PORT'])
                if not 1 <= db_port <= 65535:
                    raise ValueError(db_port)
            except ValueError:
                problems.append(f"DB_PORT must be a port number, got {values['DB_PORT']!r}")

        backup_timeout = 0
        raw_timeout = _get(environ, 'BACKUP_TIMEOUT', '0')
        try:
            backup_timeout = int(raw_timeout)
            if backup_timeout < 0:
                raise ValueError(backup_timeout)
        except ValueError:
            problems.append(f"BACKUP_TIMEOUT must be a non-negative integer, got {raw_timeout!r}")

        if problems:
            raise ConfigError('Invalid configuration: ' + '; '.join(problems))

        return cls(
            db_host=values['DB_HOST'],
            db_port=db_port,
            db_user=values['POSTGRES_USER'],
            db_password=values['POSTGRES_PASSWORD'],
            s3_access_key=values['S3_ACCESS_KEY'],
            s3_secret_key=values['S3_SECRET_KEY'],
            s3_region=values['S3_REGION'],
            s3_endpoint=values['S3_ENDPOINT'],
            s3_bucket=values['S3_BUCKET_NAME'],
            remote_folder=values['REMOTE_FOLDER'],
            schedule=values['SCHEDULE'],
            staging_dir=_get(environ, 'STAGING_DIR', DEFAULT_STAGING_DIR),
            backup_timeout=backup_timeout,
            pg_basebackup_bin=_get(environ, 'PG_BASEBACKUP_BIN', 'pg_basebackup'),
            log_level=_get(environ, 'LOG_LEVEL', 'INFO').upper(),
            log_dir=_get(environ, 'LOG_DIR') or None,
        )

    @property
    def metadata_key(self) -> str:
        """Object key of the metadata record."""
        return f"{self.remote_folder}/{METADATA_FILENAME}"

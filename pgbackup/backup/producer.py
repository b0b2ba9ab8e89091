"""
Backup producers: the step that writes a snapshot's artifact tree to disk.

Supports:
- PgBaseBackupProducer: runs pg_basebackup (tar format, gzip) against the
  configured server, optionally incremental against a prior manifest
"""

import logging
import os
import subprocess
from typing import List, Optional


logger = logging.getLogger(__name__)


class ProducerError(Exception):
    """Raised when the backup tool fails to produce a snapshot."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class BackupProducer:
    """
    Base class for anything that can write a backup into a directory.
    """

    def produce(self, target_dir: str, incremental_base: Optional[str] = None) -> str:
        """
        Write a backup into target_dir.

        Args:
            target_dir: Directory to create and fill (must not exist yet)
            incremental_base: Path to the previous snapshot's manifest, or
                None for a full backup

        Returns:
            target_dir

        Raises:
            ProducerError: If the backup could not be produced
        """
        raise NotImplementedError


class PgBaseBackupProducer(BackupProducer):
    """
    Produces base/incremental backups with pg_basebackup.

    The password is passed through PGPASSWORD; the tool's output streams
    straight through to this process's stdout/stderr.
    """

    def __init__(self, host: str, port: int, username: str, password: str,
                 executable: str = 'pg_basebackup', timeout: Optional[int] = None):
        """
        Args:
            host: Database host
            port: Database port
            username: Replication-capable database user
            password: Password for username
            executable: pg_basebackup binary name or path
            timeout: Seconds before the tool is killed (None or 0: no limit)
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.executable = executable
        self.timeout = timeout or None

    @classmethod
    def from_config(cls, config) -> 'PgBaseBackupProducer':
        return cls(
            host=config.db_host,
            port=config.db_port,
            username=config.db_user,
            password=config.db_password,
            executable=config.pg_basebackup_bin,
            timeout=config.backup_timeout
        )

    def build_command(self, target_dir: str, incremental_base: Optional[str] = None) -> List[str]:
        cmd = [
            self.executable,
            f'--host={self.host}',
            f'--port={self.port}',
            f'--username={self.username}',
            f'--pgdata={target_dir}',
            '--format=t',
            '--gzip',
            '--progress',
        ]

        if incremental_base:
            cmd.append(f'--incremental={incremental_base}')

        return cmd

    def produce(self, target_dir: str, incremental_base: Optional[str] = None) -> str:
        cmd = self.build_command(target_dir, incremental_base)

        env = os.environ.copy()
        env['PGPASSWORD'] = self.password

        mode = 'incremental' if incremental_base else 'full'
        logger.info(f"Running {self.executable} ({mode} backup) into {target_dir}")

        try:
            result = subprocess.run(cmd, env=env, timeout=self.timeout)
        except FileNotFoundError:
            raise ProducerError(f"Backup tool not found: {self.executable}")
        except subprocess.TimeoutExpired:
            raise ProducerError(f"{self.executable} timed out after {self.timeout} seconds")
        except OSError as e:
            raise ProducerError(f"Failed to start {self.executable}: {e}")

        if result.returncode != 0:
            raise ProducerError(
                f"{self.executable} exited with status {result.returncode}",
                returncode=result.returncode
            )

        logger.info("Backup created successfully")
        return target_dir

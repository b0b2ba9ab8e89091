"""
Unit tests for backup producers (pgbackup/backup/producer.py).

pg_basebackup itself is never run; subprocess.run is mocked.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from pgbackup.backup.producer import BackupProducer, PgBaseBackupProducer, ProducerError


@pytest.fixture
def pg_producer():
    return PgBaseBackupProducer(
        host='db.example.com',
        port=5432,
        username='replicator',
        password='db-secret'
    )


class TestBuildCommand:
    """Test pg_basebackup argument construction."""

    def test_full_backup_command(self, pg_producer):
        """Test a full backup has no --incremental flag."""
        cmd = pg_producer.build_command('/tmp/backups/snapshot-1')

        assert cmd == [
            'pg_basebackup',
            '--host=db.example.com',
            '--port=5432',
            '--username=replicator',
            '--pgdata=/tmp/backups/snapshot-1',
            '--format=t',
            '--gzip',
            '--progress',
        ]

    def test_incremental_backup_command(self, pg_producer):
        """Test the manifest is passed as the incremental base."""
        cmd = pg_producer.build_command('/tmp/backups/snapshot-2', '/tmp/backups/backup_manifest')

        assert cmd[-1] == '--incremental=/tmp/backups/backup_manifest'

    def test_password_not_in_command(self, pg_producer):
        """Test the password never appears on the command line."""
        cmd = pg_producer.build_command('/tmp/out', '/tmp/manifest')

        assert not any('db-secret' in arg for arg in cmd)

    def test_from_config(self, config):
        """Test building the producer from Config."""
        producer = PgBaseBackupProducer.from_config(config)

        assert producer.host == 'db.example.com'
        assert producer.port == 5432
        assert producer.username == 'replicator'
        assert producer.password == 'db-secret'
        assert producer.executable == 'pg_basebackup'
        assert producer.timeout is None


class TestProduce:
    """Test running pg_basebackup."""

    @patch('pgbackup.backup.producer.subprocess.run')
    def test_produce_success(self, mock_run, pg_producer):
        """Test a zero exit returns the target directory."""
        mock_run.return_value = MagicMock(returncode=0)

        result = pg_producer.produce('/tmp/backups/snapshot-1')

        assert result == '/tmp/backups/snapshot-1'
        args, kwargs = mock_run.call_args
        assert args[0][0] == 'pg_basebackup'
        assert kwargs['env']['PGPASSWORD'] == 'db-secret'
        assert kwargs['timeout'] is None
        # Output streams through to our own stdout/stderr
        assert 'stdout' not in kwargs
        assert 'stderr' not in kwargs
        assert 'capture_output' not in kwargs

    @patch('pgbackup.backup.producer.subprocess.run')
    def test_produce_passes_incremental_base(self, mock_run, pg_producer):
        """Test the incremental base reaches the command."""
        mock_run.return_value = MagicMock(returncode=0)

        pg_producer.produce('/tmp/out', '/tmp/backup_manifest')

        assert '--incremental=/tmp/backup_manifest' in mock_run.call_args[0][0]

    @patch('pgbackup.backup.producer.subprocess.run')
    def test_produce_nonzero_exit(self, mock_run, pg_producer):
        """Test a non-zero exit raises ProducerError with the code."""
        mock_run.return_value = MagicMock(returncode=1)

        with pytest.raises(ProducerError) as exc_info:
            pg_producer.produce('/tmp/out')

        assert exc_info.value.returncode == 1

    @patch('pgbackup.backup.producer.subprocess.run')
    def test_produce_missing_binary(self, mock_run, pg_producer):
        """Test a missing executable raises ProducerError."""
        mock_run.side_effect = FileNotFoundError('pg_basebackup')

        with pytest.raises(ProducerError, match='not found'):
            pg_producer.produce('/tmp/out')

    @patch('pgbackup.backup.producer.subprocess.run')
    def test_produce_timeout(self, mock_run):
        """Test the configured timeout is applied and expiry raises ProducerError."""
        producer = PgBaseBackupProducer('db', 5432, 'user', 'pw', timeout=600)
        mock_run.side_effect = subprocess.TimeoutExpired(cmd='pg_basebackup', timeout=600)

        with pytest.raises(ProducerError, match='timed out'):
            producer.produce('/tmp/out')

        assert mock_run.call_args[1]['timeout'] == 600

    @patch('pgbackup.backup.producer.subprocess.run')
    def test_produce_custom_executable(self, mock_run):
        """Test a custom binary path is used."""
        producer = PgBaseBackupProducer('db', 5432, 'user', 'pw',
                                        executable='/usr/lib/postgresql/17/bin/pg_basebackup')
        mock_run.return_value = MagicMock(returncode=0)

        producer.produce('/tmp/out')

        assert mock_run.call_args[0][0][0] == '/usr/lib/postgresql/17/bin/pg_basebackup'


def test_base_producer_is_abstract():
    """Test the base class must be subclassed."""
    with pytest.raises(NotImplementedError):
        BackupProducer().produce('/tmp/out')

"""
Shared pytest fixtures for pgbackup tests.

This module provides fixtures for:
- Environment/config with a temporary staging directory
- Mocked S3 bucket using moto
- A fake backup producer standing in for pg_basebackup
- Fully wired orchestrators
"""

import itertools
from pathlib import Path

import pytest
import boto3
from moto import mock_aws

from pgbackup.backup.executor import BackupOrchestrator
from pgbackup.backup.metadata import MetadataStore
from pgbackup.backup.producer import BackupProducer
from pgbackup.backup.staging import StagingArea
from pgbackup.backup.storage import S3Storage
from pgbackup.config import Config


BUCKET = 'test-bucket'
REMOTE_FOLDER = 'db-backups'


class FakeProducer(BackupProducer):
    """
    In-memory stand-in for pg_basebackup.

    Writes a small artifact tree (like pg_basebackup --format=t) into the
    target directory and remembers every call.
    """

    def __init__(self, error: Exception = None, extra_files: dict = None):
        self.error = error
        self.extra_files = extra_files or {}
        self.calls = []
        self.manifests_seen = []

    def produce(self, target_dir, incremental_base=None):
        self.calls.append((target_dir, incremental_base))

        if incremental_base is not None:
            self.manifests_seen.append(Path(incremental_base).read_text())

        target = Path(target_dir)
        target.mkdir(parents=True)
        (target / 'base.tar.gz').write_bytes(b'base data')
        (target / 'pg_wal.tar.gz').write_bytes(b'wal data')

        if self.error is not None:
            raise self.error

        (target / 'backup_manifest').write_text(f'manifest of {target.name}')
        for relative, content in self.extra_files.items():
            path = target / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        return target_dir


@pytest.fixture
def env(tmp_path):
    """Complete set of environment variables for Config.from_env()."""
    return {
        'DB_HOST': 'db.example.com',
        'DB_PORT': '5432',
        'POSTGRES_USER': 'replicator',
        'POSTGRES_PASSWORD': 'db-secret',
        'S3_ACCESS_KEY': 'test_access_key',
        'S3_SECRET_KEY': 'test_secret_key',
        'S3_REGION': 'us-east-1',
        'S3_ENDPOINT': 'https://s3.example.com',
        'S3_BUCKET_NAME': BUCKET,
        'REMOTE_FOLDER': REMOTE_FOLDER,
        'SCHEDULE': '0 */2 * * *',
        'STAGING_DIR': str(tmp_path / 'staging'),
    }


@pytest.fixture
def config(env):
    return Config.from_env(env)


@pytest.fixture
def mock_s3():
    """
    Mock S3 service using moto.

    Creates the test bucket in us-east-1.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket=BUCKET)

        yield s3


@pytest.fixture
def storage(mock_s3):
    """S3Storage against the moto bucket (default AWS endpoint)."""
    return S3Storage(
        access_key='test_access_key',
        secret_key='test_secret_key',
        bucket_name=BUCKET,
        region='us-east-1'
    )


@pytest.fixture
def staging(tmp_path):
    return StagingArea(str(tmp_path / 'staging'))


@pytest.fixture
def producer():
    return FakeProducer()


@pytest.fixture
def clock():
    """Deterministic clock advancing one minute per call."""
    counter = itertools.count(1700000000, 60)
    return lambda: next(counter)


@pytest.fixture
def make_orchestrator(storage, staging, clock):
    """Factory building orchestrators around the moto bucket and staging dir."""

    def _make(producer):
        return BackupOrchestrator(
            storage=storage,
            metadata_store=MetadataStore(storage, f'{REMOTE_FOLDER}/metadata.json'),
            staging=staging,
            producer=producer,
            remote_folder=REMOTE_FOLDER,
            clock=clock
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator, producer):
    return make_orchestrator(producer)


@pytest.fixture
def fake_producer_cls():
    """The FakeProducer class, for tests that configure or subclass it."""
    return FakeProducer

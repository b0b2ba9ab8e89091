"""
Backup module for pgbackup.

This module handles the backup run itself:
- Object storage transfers (S3-compatible)
- Last-snapshot metadata
- Local staging directory
- Backup production (pg_basebackup)
- Run orchestration
"""

from .executor import BackupOrchestrator, RunResult, RunState
from .metadata import MetadataRecord, MetadataStore
from .producer import BackupProducer, PgBaseBackupProducer
from .staging import StagingArea
from .storage import S3Storage, flatten_tree

__all__ = [
    'BackupOrchestrator',
    'RunResult',
    'RunState',
    'MetadataRecord',
    'MetadataStore',
    'BackupProducer',
    'PgBaseBackupProducer',
    'StagingArea',
    'S3Storage',
    'flatten_tree'
]

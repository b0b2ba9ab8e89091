"""
Backup orchestrator - drives one backup run end to end.

Workflow:
1. Acquire the run lock (a run already in progress drops this trigger)
2. Ensure the staging directory exists and is empty
3. Read metadata; download the last snapshot's manifest if there is one
4. Run the backup producer (incremental when a manifest was resolved)
5. Upload the snapshot tree to {remote_folder}/{snapshot_id}
6. Point metadata at the new snapshot
7. Purge staging and release the lock, whatever happened above

Every failure ends the current run; nothing is retried. The next
trigger starts again from the last snapshot recorded in metadata.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pgbackup.utils.run_lock import RunLock, RunLockError, RunInProgressError
from .metadata import MetadataError, MetadataRecord, MetadataStore
from .producer import BackupProducer, PgBaseBackupProducer, ProducerError
from .staging import StagingArea, StagingError
from .storage import S3Storage, StorageError


logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = 'snapshot-'
MANIFEST_FILENAME = 'backup_manifest'


class RunState(Enum):
    IDLE = 'idle'
    LOCKED = 'locked'
    STAGING_READY = 'staging_ready'
    MANIFEST_RESOLVED = 'manifest_resolved'
    TOOL_RUNNING = 'tool_running'
    UPLOADING = 'uploading'
    METADATA_UPDATING = 'metadata_updating'
    CLEANUP = 'cleanup'


@dataclass
class RunResult:
    """Outcome of a single orchestrator run."""

    status: str = 'running'
    state: RunState = RunState.IDLE
    snapshot_id: Optional[str] = None
    incremental_base: Optional[str] = None
    failed_state: Optional[RunState] = None
    error_message: Optional[str] = None
    metadata_updated: bool = False
    staging_purged: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'


def make_snapshot_id(timestamp: float) -> str:
    """Snapshot identifier for a run started at the given unix time."""
    return f"{SNAPSHOT_PREFIX}{int(timestamp)}"


class BackupOrchestrator:
    """
    Coordinates metadata, staging, the backup producer and storage for a run.
    """

    def __init__(self, storage, metadata_store: MetadataStore, staging: StagingArea,
                 producer: BackupProducer, remote_folder: str,
                 run_lock: Optional[RunLock] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            storage: S3Storage (or compatible) handler
            metadata_store: Store for the last-snapshot pointer
            staging: Local staging area
            producer: Backup producer writing snapshot trees
            remote_folder: Key prefix holding snapshots and metadata
            run_lock: Shared run token (default: a token on the lock file
                beside the staging root)
            clock: Returns the current unix time; used for snapshot ids
        """
        self.storage = storage
        self.metadata_store = metadata_store
        self.staging = staging
        self.producer = producer
        self.remote_folder = remote_folder.strip('/')
        self.run_lock = run_lock or RunLock.for_directory(staging.root)
        self.clock = clock

    @classmethod
    def from_config(cls, config, storage=None, producer=None,
                    run_lock: Optional[RunLock] = None) -> 'BackupOrchestrator':
        """
        Build an orchestrator wired to the configured storage and pg_basebackup.

        Args:
            config: Config instance
            storage: Storage handler override (default: S3Storage from config)
            producer: Producer override (default: PgBaseBackupProducer from config)
            run_lock: Shared run token
        """
        storage = storage or S3Storage.from_config(config)
        return cls(
            storage=storage,
            metadata_store=MetadataStore(storage, config.metadata_key),
            staging=StagingArea(config.staging_dir),
            producer=producer or PgBaseBackupProducer.from_config(config),
            remote_folder=config.remote_folder,
            run_lock=run_lock
        )

    def snapshot_prefix(self, snapshot_id: str) -> str:
        """Key prefix under which a snapshot's artifact tree is stored."""
        return f"{self.remote_folder}/{snapshot_id}"

    def manifest_key(self, snapshot_id: str) -> str:
        """Object key of a snapshot's backup manifest."""
        return f"{self.snapshot_prefix(snapshot_id)}/{MANIFEST_FILENAME}"

    def run(self) -> RunResult:
        """
        Perform one backup run.

        Never raises; the outcome is logged and returned.

        Returns:
            RunResult describing the run
        """
        result = RunResult()

        try:
            with self.run_lock.hold():
                result.state = RunState.LOCKED
                self._run_locked(result)
        except RunInProgressError:
            logger.info("Backup already in progress, trigger dropped")
            result.status = 'skipped'
        except RunLockError as e:
            self._fail(result, e)

        result.state = RunState.IDLE
        result.completed_at = datetime.now(timezone.utc)
        return result

    def _run_locked(self, result: RunResult):
        try:
            self.staging.ensure()
        except StagingError as e:
            # Nothing was staged, so there is nothing to clean up
            self._fail(result, e)
            return

        try:
            self._execute_workflow(result)
            result.status = 'success'
            logger.info(f"Backup successful: {result.snapshot_id}")
        except (StagingError, StorageError, ProducerError, MetadataError) as e:
            self._fail(result, e)
        except Exception as e:
            logger.exception(f"Unexpected error during {result.state.value}")
            self._fail(result, e, logged=True)
        finally:
            self._cleanup(result)

    def _execute_workflow(self, result: RunResult):
        """Execute the backup workflow steps; raises on the first failure."""
        # Step 1: Staging must start empty
        if not self.staging.is_empty():
            logger.warning(f"Staging directory {self.staging.root} is not empty, purging leftovers")
            self.staging.purge()
        result.state = RunState.STAGING_READY

        # Step 2: Resolve the incremental base
        manifest_path = self._resolve_manifest(result)
        result.state = RunState.MANIFEST_RESOLVED

        # Step 3: Produce the snapshot
        result.state = RunState.TOOL_RUNNING
        snapshot_id = make_snapshot_id(self.clock())
        snapshot_dir = self.staging.path_for(snapshot_id)
        self.producer.produce(snapshot_dir, manifest_path)
        result.snapshot_id = snapshot_id

        # Step 4: Upload the snapshot tree
        result.state = RunState.UPLOADING
        remote_prefix = self.snapshot_prefix(snapshot_id)
        uploaded = self.storage.upload_tree(snapshot_dir, remote_prefix)
        logger.info(f"Uploaded {uploaded} files to {remote_prefix}")

        # Step 5: Point metadata at the new snapshot
        result.state = RunState.METADATA_UPDATING
        self.metadata_store.set(MetadataRecord(last_snapshot=snapshot_id))
        result.metadata_updated = True

    def _resolve_manifest(self, result: RunResult) -> Optional[str]:
        """
        Download the last snapshot's manifest into staging.

        Returns:
            Local manifest path, or None when no snapshot is recorded

        Raises:
            StorageError: If the manifest cannot be downloaded
        """
        metadata = self.metadata_store.get()

        if metadata is None:
            logger.warning("Failed to get metadata. Proceeding with a full backup.")
            return None

        if metadata.last_snapshot is None:
            logger.info("No previous snapshot recorded. Proceeding with a full backup.")
            return None

        manifest_path = self.staging.path_for(MANIFEST_FILENAME)
        self.storage.download_object(self.manifest_key(metadata.last_snapshot), manifest_path)

        result.incremental_base = metadata.last_snapshot
        logger.info(f"Incremental backup against {metadata.last_snapshot}")
        return manifest_path

    def _fail(self, result: RunResult, error: Exception, logged: bool = False):
        result.status = 'failed'
        result.failed_state = result.state
        result.error_message = str(error)
        if not logged:
            logger.error(f"Backup failed during {result.state.value}: {error}")

    def _cleanup(self, result: RunResult):
        """Purge the staging directory; failures are logged only."""
        result.state = RunState.CLEANUP
        try:
            self.staging.purge()
            result.staging_purged = True
        except StagingError as e:
            logger.error(f"Failed to clean up staging directory: {e}")

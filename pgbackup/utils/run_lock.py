"""
Run token guaranteeing at most one backup run at a time.

Threads of one process contend on an in-memory lock. Separate processes
(the scheduled daemon and a manual `pgbackup backup`) contend on a lock
file placed beside the staging directory they share.
"""

import os
import threading
from contextlib import contextmanager
from typing import Optional

from filelock import FileLock, Timeout


LOCK_SUFFIX = '.lock'


class RunLockError(Exception):
    """Raised when the run token cannot be taken."""
    pass


class RunInProgressError(RunLockError):
    """Raised when the run token is already held."""
    pass


def lock_path_for(directory: str) -> str:
    """Lock file guarding runs that share the given staging directory."""
    return os.path.normpath(str(directory)) + LOCK_SUFFIX


class RunLock:
    """
    Non-reentrant, non-blocking run token.

    Usage:
        with run_lock.hold():
            ...  # raises RunInProgressError instead of waiting
    """

    def __init__(self, lock_path: Optional[str] = None):
        """
        Args:
            lock_path: Lock file shared with other processes (default:
                guard this process only)
        """
        self.lock_path = lock_path
        self._lock = threading.Lock()
        self._file_lock = FileLock(lock_path) if lock_path else None

    @classmethod
    def for_directory(cls, directory: str) -> 'RunLock':
        """Token shared by every process staging into directory."""
        return cls(lock_path_for(directory))

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self):
        """
        Acquire the token for the duration of the block.

        Raises:
            RunInProgressError: If another run holds the token (including
                the calling thread itself, or another process)
            RunLockError: If the lock file cannot be opened
        """
        if not self._lock.acquire(blocking=False):
            raise RunInProgressError("A backup run is already in progress")

        try:
            if self._file_lock is not None:
                self._acquire_file_lock()
            try:
                yield
            finally:
                if self._file_lock is not None:
                    self._file_lock.release()
        finally:
            self._lock.release()

    def _acquire_file_lock(self):
        try:
            os.makedirs(os.path.dirname(self.lock_path) or '.', exist_ok=True)
            self._file_lock.acquire(timeout=0)
        except Timeout:
            raise RunInProgressError(
                f"A backup run is already in progress (lock held: {self.lock_path})")
        except OSError as e:
            raise RunLockError(f"Failed to open run lock {self.lock_path}: {e}")

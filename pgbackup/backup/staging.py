"""
Local scratch directory where the backup tool writes a run's output before upload.
"""

import logging
import os
import shutil
from pathlib import Path


logger = logging.getLogger(__name__)


class StagingError(Exception):
    """Raised when the staging directory cannot be created or emptied."""
    pass


class StagingArea:
    """
    Manages the staging root directory.

    The root itself persists between runs; its children are the per-run
    artifacts and are removed by purge().
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def path_for(self, name: str) -> str:
        """Path of a direct child of the staging root."""
        return str(self.root / name)

    def ensure(self) -> str:
        """
        Create the staging root if it does not exist.

        Returns:
            Staging root path

        Raises:
            StagingError: If the directory cannot be created
        """
        if self.root.is_dir():
            logger.info(f"Staging directory already exists: {self.root}")
            return str(self.root)

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StagingError(f"Failed to create staging directory {self.root}: {e}")

        logger.info(f"Staging directory created: {self.root}")
        return str(self.root)

    def is_empty(self) -> bool:
        """True when the root is absent or has no children."""
        if not self.root.is_dir():
            return True
        return not any(self.root.iterdir())

    def purge(self) -> int:
        """
        Delete every direct child of the staging root, keeping the root.

        Returns:
            Number of removed entries

        Raises:
            StagingError: If any entry cannot be removed
        """
        if not self.root.is_dir():
            return 0

        removed = 0
        try:
            for entry in self.root.iterdir():
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    os.remove(entry)
                logger.debug(f"Deleted: {entry}")
                removed += 1
        except OSError as e:
            raise StagingError(f"Failed to purge staging directory {self.root}: {e}")

        logger.info(f"Deleted all contents inside: {self.root}")
        return removed

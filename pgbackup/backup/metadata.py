"""
Durable cross-run state: a pointer to the last successfully stored snapshot.

The record lives as one JSON object at a fixed key:
{"lastSnapshot": "<snapshot id>" | null}
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from .storage import StorageError


logger = logging.getLogger(__name__)


class MetadataError(Exception):
    """Raised when the metadata record cannot be written."""
    pass


class MetadataSerializationError(MetadataError):
    pass


class MetadataUploadError(MetadataError):
    pass


@dataclass(frozen=True)
class MetadataRecord:
    last_snapshot: Optional[str] = None

    def to_json(self) -> bytes:
        return json.dumps({'lastSnapshot': self.last_snapshot}).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'MetadataRecord':
        """
        Parse a stored record.

        Raises:
            ValueError: If the payload is not a valid record
        """
        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")

        last_snapshot = payload.get('lastSnapshot')
        if last_snapshot is not None and (not isinstance(last_snapshot, str) or not last_snapshot):
            raise ValueError(f"Invalid lastSnapshot value: {last_snapshot!r}")

        return cls(last_snapshot=last_snapshot)


class MetadataStore:
    """
    Reads and writes the metadata record through a storage handler.
    """

    def __init__(self, storage, key: str):
        """
        Args:
            storage: S3Storage (or compatible) handler
            key: Object key of the record
        """
        self.storage = storage
        self.key = key

    def get(self) -> Optional[MetadataRecord]:
        """
        Fetch the current record.

        Returns:
            MetadataRecord, or None when the record is missing, unreadable
            or malformed. Callers treat None as "no prior snapshot".
        """
        try:
            data = self.storage.get_bytes(self.key)
        except StorageError as e:
            logger.warning(f"Could not read metadata {self.key}: {e}")
            return None

        try:
            return MetadataRecord.from_json(data)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Could not parse metadata {self.key}: {e}")
            return None

    def set(self, record: MetadataRecord):
        """
        Overwrite the stored record.

        Must only be called once the referenced snapshot is fully uploaded.

        Raises:
            MetadataSerializationError: If the record cannot be encoded
            MetadataUploadError: If the write fails
        """
        try:
            data = record.to_json()
        except (TypeError, ValueError) as e:
            raise MetadataSerializationError(f"Failed to serialize metadata: {e}")

        try:
            self.storage.put_bytes(self.key, data)
        except StorageError as e:
            raise MetadataUploadError(f"Failed to upload {self.key}: {e}")

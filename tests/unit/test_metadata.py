"""
Unit tests for the metadata store (pgbackup/backup/metadata.py).
"""

import json
from unittest.mock import MagicMock

import pytest

from pgbackup.backup.metadata import (
    MetadataRecord,
    MetadataStore,
    MetadataSerializationError,
    MetadataUploadError
)
from pgbackup.backup.storage import StorageError


KEY = 'db-backups/metadata.json'


class TestMetadataRecord:
    """Test the record's JSON format."""

    def test_to_json(self):
        """Test the stored shape uses the lastSnapshot field."""
        record = MetadataRecord(last_snapshot='snapshot-1700000000')

        assert json.loads(record.to_json()) == {'lastSnapshot': 'snapshot-1700000000'}

    def test_to_json_absent_snapshot(self):
        """Test an empty record serializes lastSnapshot as null."""
        assert json.loads(MetadataRecord().to_json()) == {'lastSnapshot': None}

    def test_from_json_null_snapshot(self):
        """Test null lastSnapshot parses to a record without snapshot."""
        record = MetadataRecord.from_json(b'{"lastSnapshot": null}')

        assert record.last_snapshot is None

    def test_from_json_missing_field(self):
        """Test a record without lastSnapshot is treated as null."""
        assert MetadataRecord.from_json(b'{}').last_snapshot is None

    @pytest.mark.parametrize('payload', [
        b'not json',
        b'[]',
        b'"snapshot-1"',
        b'{"lastSnapshot": 42}',
        b'{"lastSnapshot": ""}',
    ])
    def test_from_json_rejects_invalid(self, payload):
        """Test malformed payloads raise ValueError."""
        with pytest.raises(ValueError):
            MetadataRecord.from_json(payload)


class TestMetadataStore:
    """Test reading and writing the record through S3."""

    def test_get_missing_object_returns_none(self, storage):
        """Test an absent record means no prior snapshot."""
        store = MetadataStore(storage, KEY)

        assert store.get() is None

    def test_set_then_get(self, storage, mock_s3):
        """Test a written record is read back."""
        store = MetadataStore(storage, KEY)

        store.set(MetadataRecord(last_snapshot='snapshot-1700000000'))

        assert store.get() == MetadataRecord(last_snapshot='snapshot-1700000000')
        body = mock_s3.Object('test-bucket', KEY).get()['Body'].read()
        assert json.loads(body) == {'lastSnapshot': 'snapshot-1700000000'}

    def test_set_overwrites(self, storage):
        """Test set replaces the previous pointer."""
        store = MetadataStore(storage, KEY)

        store.set(MetadataRecord(last_snapshot='snapshot-1'))
        store.set(MetadataRecord(last_snapshot='snapshot-2'))

        assert store.get().last_snapshot == 'snapshot-2'

    def test_get_malformed_object_returns_none(self, storage, mock_s3):
        """Test an unparseable record degrades to None."""
        mock_s3.Object('test-bucket', KEY).put(Body=b'{broken')
        store = MetadataStore(storage, KEY)

        assert store.get() is None

    def test_get_non_utf8_object_returns_none(self, storage, mock_s3):
        """Test binary garbage degrades to None."""
        mock_s3.Object('test-bucket', KEY).put(Body=b'\xff\xfe\x00')
        store = MetadataStore(storage, KEY)

        assert store.get() is None

    def test_get_storage_error_returns_none(self):
        """Test any storage failure degrades to None."""
        storage = MagicMock()
        storage.get_bytes.side_effect = StorageError('connection reset')
        store = MetadataStore(storage, KEY)

        assert store.get() is None

    def test_set_upload_failure(self):
        """Test write failures raise MetadataUploadError."""
        storage = MagicMock()
        storage.put_bytes.side_effect = StorageError('access denied')
        store = MetadataStore(storage, KEY)

        with pytest.raises(MetadataUploadError, match='access denied'):
            store.set(MetadataRecord(last_snapshot='snapshot-1'))

    def test_set_serialization_failure(self):
        """Test unserializable records raise MetadataSerializationError without uploading."""
        storage = MagicMock()
        store = MetadataStore(storage, KEY)

        with pytest.raises(MetadataSerializationError):
            store.set(MetadataRecord(last_snapshot=object()))

        storage.put_bytes.assert_not_called()

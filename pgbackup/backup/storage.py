"""
Object storage handler for backup artifacts.

S3Storage talks to any S3-compatible endpoint and provides:
- whole-object get/put for small records (metadata)
- streamed single-object download (backup manifests)
- recursive upload of a local artifact tree to a key prefix
"""

import logging
import os
import posixpath
from typing import Iterator, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError


logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

_NOT_FOUND_CODES = ('NoSuchKey', '404', 'NotFound')


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist."""
    pass


class TransferError(StorageError):
    """Raised when a file cannot be transferred. Carries the local path involved."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


def flatten_tree(local_root: str, remote_prefix: str) -> Iterator[Tuple[str, str]]:
    """
    Walk a local directory tree and yield (local path, object key) pairs.

    Only regular files produce pairs; directories map to nothing since
    object storage has no real directories. Keys mirror the path relative
    to local_root, joined with '/'.

    Args:
        local_root: Directory to walk
        remote_prefix: Key prefix for every yielded key

    Yields:
        Tuple of (absolute local file path, object key)

    Raises:
        TransferError: If the tree contains a symlinked directory, which
            would otherwise be skipped silently
    """
    prefix = remote_prefix.strip('/')

    for dirpath, dirnames, filenames in os.walk(local_root):
        dirnames.sort()
        for dirname in dirnames:
            dir_path = os.path.join(dirpath, dirname)
            if os.path.islink(dir_path):
                raise TransferError(f"Symlinked directory in upload tree: {dir_path}", dir_path)
        for filename in sorted(filenames):
            local_path = os.path.join(dirpath, filename)
            if not os.path.isfile(local_path):
                continue

            relative = os.path.relpath(local_path, local_root)
            relative = relative.replace(os.sep, '/')
            yield local_path, posixpath.join(prefix, relative) if prefix else relative


class S3Storage:
    """
    Handler for S3-compatible object storage.

    Snapshots are stored as flat key hierarchies:
    {remote_folder}/{snapshot_id}/{relative path}
    """

    def __init__(self, access_key: str, secret_key: str, bucket_name: str,
                 region: str = 'us-east-1', endpoint_url: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Region name (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services (default: AWS)
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @classmethod
    def from_config(cls, config) -> 'S3Storage':
        """Build a storage handler from a Config."""
        return cls(
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
            bucket_name=config.s3_bucket,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint
        )

    def get_bytes(self, key: str) -> bytes:
        """
        Read a whole object into memory.

        Args:
            key: Object key

        Returns:
            Object body

        Raises:
            ObjectNotFoundError: If the object does not exist
            StorageError: If the read fails
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'].read()
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"Object not found: {key}")
            raise StorageError(f"S3 get failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 get failed: {e}")

    def put_bytes(self, key: str, data: bytes):
        """
        Create or overwrite an object with the given body.

        Raises:
            StorageError: If the write fails
        """
        try:
            self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=data)
        except ClientError as e:
            raise StorageError(f"S3 put failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 put failed: {e}")

    def download_object(self, key: str, local_path: str):
        """
        Stream one object to a local file, overwriting it if present.

        Args:
            key: Object key
            local_path: Destination file path

        Raises:
            ObjectNotFoundError: If the object does not exist
            TransferError: If the download or local write fails
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"Object not found: {key}")
            raise TransferError(f"Failed to fetch object {key} ({error_code}): {e}", local_path)
        except BotoCoreError as e:
            raise TransferError(f"Failed to fetch object {key}: {e}", local_path)

        body = response['Body']
        try:
            with open(local_path, 'wb') as f:
                for chunk in body.iter_chunks(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
        except (OSError, BotoCoreError) as e:
            raise TransferError(f"Failed to save {key} to {local_path}: {e}", local_path)
        finally:
            body.close()

    def upload_file(self, local_path: str, key: str):
        """
        Upload one local file to the given key.

        Raises:
            TransferError: If the upload fails
        """
        if not os.path.isfile(local_path):
            raise TransferError(f"Local file not found: {local_path}", local_path)

        try:
            file_size = os.path.getsize(local_path)

            # Use multipart upload for large artifacts
            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key)
            else:
                self._simple_upload(local_path, key)

        except ClientError as e:
            raise TransferError(
                f"Failed to upload {local_path} ({_error_code(e)}): {e}", local_path)
        except (BotoCoreError, OSError) as e:
            raise TransferError(f"Failed to upload {local_path}: {e}", local_path)

    def upload_tree(self, local_root: str, remote_prefix: str) -> int:
        """
        Recursively upload every regular file under local_root.

        The first failing file aborts the whole upload. Files uploaded
        before the failure are left in place.

        Args:
            local_root: Local directory to upload
            remote_prefix: Key prefix for the uploaded tree

        Returns:
            Number of uploaded files

        Raises:
            TransferError: If local_root is not a directory or any file fails
        """
        if not os.path.isdir(local_root):
            raise TransferError(f"Local directory not found: {local_root}", local_root)

        uploaded = 0
        for local_path, key in flatten_tree(local_root, remote_prefix):
            self.upload_file(local_path, key)
            uploaded += 1

        return uploaded

    def _simple_upload(self, local_path: str, key: str):
        """
        Upload file using simple put_object.

        Args:
            local_path: Path to local file
            key: Object key
        """
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, key: str):
        """
        Upload large file using multipart upload.

        Args:
            local_path: Path to local file
            key: Object key
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            # Abort multipart upload on error
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id} for {key}: {abort_error}")
            raise

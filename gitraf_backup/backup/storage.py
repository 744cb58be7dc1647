"""
Object store client for backup artifacts.

S3Storage wraps a boto3 S3 client bound to one bucket and exposes the narrow
set of operations the backup run needs: upload, list, delete and a full
mirror sync of a directory tree. Any S3-compatible endpoint works.
"""

import os
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import boto3
from botocore.exceptions import ClientError, BotoCoreError


# Use multipart upload above this size
MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def build_key(*parts: str) -> str:
    """Join key segments with '/', ignoring empty segments and stray slashes."""
    return '/'.join(p.strip('/') for p in parts if p and p.strip('/'))


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for backup objects in an S3 bucket.

    Archive uploads land at {prefix}/{repository}/{artifact}; mirror syncs
    keep {prefix}/{repository}/latest/ identical to the repository tree.
    """

    def __init__(
        self,
        bucket_name: str,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            profile: Named AWS profile holding the credentials (default chain if None)
            region: AWS region (profile/environment default if None)
            endpoint_url: Endpoint of an S3-compatible service (AWS if None)

        Raises:
            StorageError: If the client cannot be created (e.g. unknown profile)
        """
        self.bucket_name = bucket_name
        self.profile = profile
        self.region = region
        self.endpoint_url = endpoint_url

        try:
            session = boto3.Session(profile_name=profile, region_name=region)
            self.s3_client = session.client('s3', endpoint_url=endpoint_url)
        except BotoCoreError as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")
        except ValueError as e:
            raise StorageError(f"Invalid S3 client settings: {e}")

    def upload(self, local_path: str, key: str) -> str:
        """
        Upload a file to S3.

        Args:
            local_path: Path to local file
            key: Destination object key

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key)
            else:
                self._simple_upload(local_path, key)

            return key

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read {local_path}: {e}")

    def _simple_upload(self, local_path: str, key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, key: str):
        """
        Upload large file in chunks, aborting the upload on any error.

        Args:
            local_path: Path to local file
            key: S3 object key
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
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError):
                pass
            raise

    def delete(self, key: str):
        """
        Delete an object from S3.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_objects(self, prefix: str) -> List[Dict[str, Any]]:
        """
        List objects in S3 with given prefix.

        Args:
            prefix: S3 key prefix to filter by

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def sync_directory(self, local_dir: str, key_prefix: str, delete: bool = True) -> Dict[str, int]:
        """
        Mirror a local directory tree under a key prefix.

        A file is uploaded when it is missing remotely, its size differs or
        the local copy is newer. With delete=True, objects under the prefix
        that have no local counterpart are removed.

        Args:
            local_dir: Directory to mirror
            key_prefix: Destination prefix (a trailing '/' is added if missing)
            delete: Remove destination-only objects

        Returns:
            Dict with 'uploaded' and 'deleted' counts

        Raises:
            StorageError: If the directory is missing or any S3 call fails
        """
        source = Path(local_dir)
        if not source.is_dir():
            raise StorageError(f"Local directory not found: {local_dir}")

        if not key_prefix.endswith('/'):
            key_prefix += '/'

        remote = {obj['Key']: obj for obj in self.list_objects(key_prefix)}
        local_keys = set()
        result = {'uploaded': 0, 'deleted': 0}

        for path in sorted(source.rglob('*')):
            if not path.is_file():
                continue

            key = key_prefix + path.relative_to(source).as_posix()
            local_keys.add(key)

            if self._needs_upload(path, remote.get(key)):
                self.upload(str(path), key)
                result['uploaded'] += 1

        if delete:
            for key in sorted(set(remote) - local_keys):
                self.delete(key)
                result['deleted'] += 1

        return result

    @staticmethod
    def _needs_upload(path: Path, remote_obj: Optional[Dict[str, Any]]) -> bool:
        if remote_obj is None:
            return True

        stat = path.stat()
        if stat.st_size != remote_obj['Size']:
            return True

        remote_modified = remote_obj['LastModified']
        if remote_modified.tzinfo is None:
            remote_modified = remote_modified.replace(tzinfo=timezone.utc)
        local_modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return local_modified > remote_modified

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")

"""
Remote storage handlers for backup archives.

Supports:
- RcloneStorage: Upload through rclone to any configured remote
- S3Storage: Upload directly to AWS S3 (or an S3-compatible endpoint)

Both lay archives out as {target_dir}/{container}/{filename}.
"""

import os
import json
import shlex
import logging
import subprocess
from typing import Optional, List

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from .errors import BackupError


logger = logging.getLogger(__name__)


class StorageError(BackupError):
    """Raised when storage operation fails."""
    pass


class RcloneStorage:
    """
    Handler for uploading backups with rclone.

    The target is a remote name from rclone.conf, e.g. 'backuphosting'.
    """

    def __init__(self, target: str, binary: str = 'rclone', options: Optional[str] = None):
        """
        Initialize rclone storage handler.

        Args:
            target: rclone remote name (without trailing colon)
            binary: rclone executable name or path
            options: Extra command line options passed to 'rclone copy'
        """
        if not target:
            raise StorageError("rclone target is not configured")

        self.target = target.rstrip(':')
        self.binary = binary
        self.options = shlex.split(options) if options else []

    @property
    def required_binaries(self) -> List[str]:
        return [self.binary]

    def describe(self, remote_path: str) -> str:
        return f"{self.target}:{remote_path}"

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = [self.binary] + args
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            return subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise StorageError(f"{self.binary} command not found: {e}")

    def _check(self, args: List[str]) -> str:
        result = self._run(args)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or '').strip()
            raise StorageError(
                f"'{self.binary} {' '.join(args)}' failed (exit {result.returncode}): {detail}"
            )
        return result.stdout

    def ensure_remote_directory(self, path: str):
        """
        Create the remote directory if it does not exist.

        Raises:
            StorageError: If rclone mkdir fails
        """
        self._check(['mkdir', self.describe(path)])

    def upload(self, local_path: str, remote_dir: str) -> str:
        """
        Copy a local file into a remote directory.

        Args:
            local_path: Path to local file
            remote_dir: Remote directory (relative to the target root)

        Returns:
            Remote path of uploaded file

        Raises:
            StorageError: If the file is missing or rclone copy fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        filename = os.path.basename(local_path)
        self._check(self.options + ['copy', str(local_path), self.describe(remote_dir) + '/'])
        return f"{remote_dir}/{filename}"

    def remote_size(self, remote_path: str) -> Optional[int]:
        """
        Size in bytes of a remote file, or None if it cannot be found.

        Uses 'rclone lsjson', which works for every remote type.
        """
        result = self._run(['lsjson', self.describe(remote_path)])
        if result.returncode != 0:
            logger.debug(f"lsjson failed for {self.describe(remote_path)}: {result.stderr.strip()}")
            return None

        try:
            entries = json.loads(result.stdout or '[]')
        except ValueError as e:
            raise StorageError(f"Unexpected lsjson output for {self.describe(remote_path)}: {e}")

        filename = os.path.basename(remote_path)
        for entry in entries:
            if entry.get('Name') == filename and not entry.get('IsDir', False):
                return int(entry.get('Size', -1))

        return None


class S3Storage:
    """
    Handler for uploading backups to AWS S3.

    Credentials fall back to boto3's default chain when not given.
    """

    # Files above this size go through multipart upload
    MULTIPART_THRESHOLD = 100 * 1024 * 1024
    CHUNK_SIZE = 10 * 1024 * 1024

    def __init__(
        self,
        bucket_name: str,
        region: str = 'us-east-1',
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID
            secret_key: AWS secret access key
            endpoint_url: Endpoint of an S3-compatible service
        """
        if not bucket_name:
            raise StorageError("S3 bucket is not configured")

        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @property
    def required_binaries(self) -> List[str]:
        return []

    def describe(self, remote_path: str) -> str:
        return f"s3://{self.bucket_name}/{remote_path}"

    def ensure_remote_directory(self, path: str):
        """
        S3 has no directories; check that the bucket is reachable instead.

        Raises:
            StorageError: If the bucket is missing or access is denied
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchBucket'):
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")

    def upload(self, local_path: str, remote_dir: str) -> str:
        """
        Upload a local file under the given key prefix.

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        s3_key = f"{remote_dir.strip('/')}/{os.path.basename(local_path)}"

        try:
            file_size = os.path.getsize(local_path)

            if file_size > self.MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

            return s3_key

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload large file in CHUNK_SIZE parts.

        The multipart upload is aborted if any part fails.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(self.CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
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
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except BaseException:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def remote_size(self, remote_path: str) -> Optional[int]:
        """Size in bytes of an S3 object, or None if it does not exist."""
        try:
            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=remote_path)
            return response['ContentLength']
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchKey', 'NotFound'):
                return None
            raise StorageError(f"S3 head_object failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 head_object failed: {e}")


def create_storage(config):
    """
    Factory function to create the configured storage handler.

    Args:
        config: Config class or instance

    Returns:
        RcloneStorage or S3Storage instance

    Raises:
        ValueError: If the storage backend is invalid
    """
    backend = config.STORAGE_BACKEND

    if backend == 'rclone':
        return RcloneStorage(
            target=config.RCLONE_TARGET,
            binary=config.RCLONE_BINARY,
            options=config.RCLONE_OPTIONS
        )
    elif backend == 's3':
        return S3Storage(
            bucket_name=config.S3_BUCKET,
            region=config.S3_REGION,
            access_key=config.AWS_ACCESS_KEY_ID,
            secret_key=config.AWS_SECRET_ACCESS_KEY,
            endpoint_url=config.S3_ENDPOINT_URL
        )
    else:
        raise ValueError(f"Invalid storage backend: {backend}")

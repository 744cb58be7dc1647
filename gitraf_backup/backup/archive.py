"""
Per-repository transfer.

ArchiveBuilder turns a BackupJob into an Artifact in the object store, either
as a timestamped tarball (archive mode) or as an in-place mirror of the
repository tree under latest/ (mirror mode). Failures come back as
TransferError values so the caller can move on to the next repository.
"""

import os
import logging
import tempfile
from typing import Union

from gitraf_backup.config import BackupConfig
from gitraf_backup.models import Artifact, BackupJob, TransferError, TransferMode
from .compression import create_archive, generate_archive_name, get_archive_size, CompressionError
from .storage import StorageError, build_key


logger = logging.getLogger(__name__)

MIRROR_DIRNAME = 'latest'


class ArchiveBuilder:
    """Produces and transfers one artifact per repository."""

    def __init__(self, config: BackupConfig, storage):
        """
        Initialize archive builder.

        Args:
            config: Resolved run configuration
            storage: Object store client (S3Storage or compatible)
        """
        self.config = config
        self.storage = storage

    def transfer(self, job: BackupJob) -> Union[Artifact, TransferError]:
        """
        Transfer one repository using the configured mode.

        Args:
            job: Repository and run timestamp

        Returns:
            Artifact on success, TransferError on failure
        """
        repo = job.repository
        logger.info(f"Backing up repository: {repo.name}")

        try:
            if self.config.transfer_mode == TransferMode.MIRROR:
                artifact = self._mirror(job)
            else:
                artifact = self._archive(job)
        except (CompressionError, StorageError, OSError) as e:
            logger.error(f"Failed to backup {repo.name}: {e}")
            return TransferError(repository=repo.name, reason=str(e))

        logger.info(f"Completed backup: {repo.name} -> {artifact.key}")
        return artifact

    def mirror_key(self, job: BackupJob) -> str:
        return build_key(self.config.prefix, job.repository.name, MIRROR_DIRNAME) + '/'

    def _archive(self, job: BackupJob) -> Artifact:
        repo = job.repository
        artifact_name = generate_archive_name(repo.name, job.stamp)
        key = build_key(self.config.prefix, repo.name, artifact_name)

        # Scratch space is removed whatever happens below
        with tempfile.TemporaryDirectory(prefix='gitraf_backup_') as temp_dir:
            archive_base = os.path.join(temp_dir, f"{repo.name}_{job.stamp}")
            archive_path = create_archive(repo.path, archive_base)
            size = get_archive_size(archive_path)
            logger.debug(f"Archive created: {artifact_name} ({size / 1024 / 1024:.2f} MB)")

            self.storage.upload(archive_path, key)

        return Artifact(
            repository=repo.name,
            mode=TransferMode.ARCHIVE,
            name=artifact_name,
            key=key,
            size_bytes=size
        )

    def _mirror(self, job: BackupJob) -> Artifact:
        repo = job.repository
        key = self.mirror_key(job)

        result = self.storage.sync_directory(repo.path, key, delete=True)
        logger.debug(
            f"Mirror synced: {repo.name} "
            f"(uploaded {result['uploaded']}, deleted {result['deleted']})"
        )

        return Artifact(
            repository=repo.name,
            mode=TransferMode.MIRROR,
            name=MIRROR_DIRNAME,
            key=key,
            uploaded=result['uploaded'],
            deleted=result['deleted']
        )

"""
Unit tests for per-repository transfer (gitraf_backup/backup/archive.py).
"""

import os
import glob
import shutil
import tempfile
from dataclasses import replace
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from gitraf_backup.backup.archive import ArchiveBuilder
from gitraf_backup.backup.scanner import RepositoryScanner
from gitraf_backup.backup.storage import StorageError
from gitraf_backup.models import Artifact, BackupJob, TransferError, TransferMode


RUN_TIME = datetime(2024, 1, 15, 12, 30, 45)


@pytest.fixture
def jobs(repos_root):
    repos = {r.name: r for r in RepositoryScanner().scan(str(repos_root))}
    return {name: BackupJob(repository=repo, timestamp=RUN_TIME) for name, repo in repos.items()}


@pytest.fixture
def scratch_dirs():
    """Names of leftover scratch directories in the temp area."""
    def leftovers():
        return glob.glob(os.path.join(tempfile.gettempdir(), 'gitraf_backup_*'))
    return leftovers


class TestArchiveMode:

    def test_archive_uploaded_under_repository_key(self, backup_config, storage, mock_s3, jobs, list_keys):
        builder = ArchiveBuilder(backup_config, storage)

        artifact = builder.transfer(jobs['alpha'])

        assert isinstance(artifact, Artifact)
        assert artifact.mode == TransferMode.ARCHIVE
        assert artifact.name == 'alpha_20240115_123045.tar.gz'
        assert artifact.key == 'gitraf-backup/alpha/alpha_20240115_123045.tar.gz'
        assert artifact.size_bytes > 0
        assert list_keys(mock_s3) == ['gitraf-backup/alpha/alpha_20240115_123045.tar.gz']

    def test_empty_prefix(self, backup_config, storage, mock_s3, jobs, list_keys):
        builder = ArchiveBuilder(replace(backup_config, s3_prefix=''), storage)

        artifact = builder.transfer(jobs['beta'])

        assert artifact.key == 'beta/beta_20240115_123045.tar.gz'
        assert list_keys(mock_s3) == ['beta/beta_20240115_123045.tar.gz']

    def test_scratch_removed_after_success(self, backup_config, jobs, scratch_dirs):
        before = set(scratch_dirs())
        storage = MagicMock()

        ArchiveBuilder(backup_config, storage).transfer(jobs['alpha'])

        uploaded_path = storage.upload.call_args[0][0]
        assert not os.path.exists(uploaded_path)
        assert set(scratch_dirs()) == before

    def test_upload_failure_returns_transfer_error(self, backup_config, jobs, scratch_dirs):
        before = set(scratch_dirs())
        storage = MagicMock()
        storage.upload.side_effect = StorageError("S3 upload failed (AccessDenied)")

        outcome = ArchiveBuilder(backup_config, storage).transfer(jobs['alpha'])

        assert isinstance(outcome, TransferError)
        assert outcome.repository == 'alpha'
        assert 'AccessDenied' in outcome.reason
        assert set(scratch_dirs()) == before

    def test_vanished_source_returns_transfer_error(self, backup_config, jobs):
        storage = MagicMock()
        shutil.rmtree(jobs['beta'].repository.path)

        outcome = ArchiveBuilder(backup_config, storage).transfer(jobs['beta'])

        assert isinstance(outcome, TransferError)
        assert outcome.repository == 'beta'
        # Nothing written to the store
        storage.upload.assert_not_called()


class TestMirrorMode:

    def test_mirror_syncs_to_latest(self, backup_config, storage, mock_s3, jobs, list_keys):
        config = replace(backup_config, transfer_mode=TransferMode.MIRROR)

        artifact = ArchiveBuilder(config, storage).transfer(jobs['alpha'])

        assert artifact.mode == TransferMode.MIRROR
        assert artifact.key == 'gitraf-backup/alpha/latest/'
        assert artifact.uploaded == 3
        assert all(k.startswith('gitraf-backup/alpha/latest/') for k in list_keys(mock_s3))

    def test_mirror_deletes_destination_only_objects(self, backup_config, storage, mock_s3, jobs, list_keys):
        mock_s3.Bucket('test-bucket').put_object(Key='gitraf-backup/alpha/latest/stale-ref', Body=b'x')
        config = replace(backup_config, transfer_mode=TransferMode.MIRROR)

        artifact = ArchiveBuilder(config, storage).transfer(jobs['alpha'])

        assert artifact.deleted == 1
        assert 'gitraf-backup/alpha/latest/stale-ref' not in list_keys(mock_s3)

    def test_mirror_failure_returns_transfer_error(self, backup_config, jobs):
        config = replace(backup_config, transfer_mode=TransferMode.MIRROR)
        storage = MagicMock()
        storage.sync_directory.side_effect = StorageError("S3 list failed (AccessDenied)")

        outcome = ArchiveBuilder(config, storage).transfer(jobs['beta'])

        assert isinstance(outcome, TransferError)
        assert outcome.repository == 'beta'
        storage.sync_directory.assert_called_once_with(
            jobs['beta'].repository.path, 'gitraf-backup/beta/latest/', delete=True
        )

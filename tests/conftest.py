"""
Shared pytest fixtures for gitraf-backup tests.

This module provides fixtures for:
- A repository root with suffixed and unsuffixed bare repositories
- Resolved run configuration
- Mock S3 service (moto) and an S3Storage bound to it
- Lock file location
"""

import os
from pathlib import Path

import pytest
import boto3
from moto import mock_aws
import freezegun

# freezegun's default ignore list contains 'gi' (PyGObject), matched by prefix,
# which would also exclude 'gitraf_backup' from time freezing.
freezegun.configure(default_ignore_list=[
    'gi.' if name == 'gi' else name for name in freezegun.config.DEFAULT_IGNORE_LIST
])

from gitraf_backup.config import BackupConfig
from gitraf_backup.models import TransferMode
from gitraf_backup.backup.storage import S3Storage


def make_bare_repo(path: Path) -> Path:
    """Create a minimal bare repository layout at path."""
    path.mkdir(parents=True)
    (path / 'objects' / 'pack').mkdir(parents=True)
    (path / 'refs' / 'heads').mkdir(parents=True)
    (path / 'HEAD').write_text('ref: refs/heads/main\n')
    (path / 'config').write_text('[core]\n\tbare = true\n')
    (path / 'refs' / 'heads' / 'main').write_text('0' * 40 + '\n')
    return path


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches real AWS."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('AWS_PROFILE', raising=False)


@pytest.fixture
def repos_root(tmp_path):
    """
    Create a repository root.

    Contains:
    - alpha.git (suffixed bare repository)
    - beta (bare layout without suffix)
    - notes.txt (plain file, ignored)
    - scratch/ (plain directory, ignored)
    """
    root = tmp_path / 'repos'
    root.mkdir()

    make_bare_repo(root / 'alpha.git')
    make_bare_repo(root / 'beta')

    (root / 'notes.txt').write_text('not a repository')
    (root / 'scratch').mkdir()
    (root / 'scratch' / 'file.txt').write_text('not a repository either')

    return root


@pytest.fixture
def lock_path(tmp_path):
    return str(tmp_path / 'gitraf-backup.lock')


@pytest.fixture
def backup_config(repos_root, lock_path):
    """Archive mode configuration pointing at the test bucket."""
    return BackupConfig(
        repos_dir=str(repos_root),
        s3_bucket='test-bucket',
        s3_prefix='gitraf-backup',
        retention_days=30,
        transfer_mode=TransferMode.ARCHIVE,
        lock_file=lock_path,
        log_dir=None,
        aws_region='us-east-1'
    )


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def storage(mock_s3):
    """S3Storage bound to the mocked test bucket."""
    return S3Storage(bucket_name='test-bucket', region='us-east-1')


def bucket_keys(s3, bucket='test-bucket'):
    return sorted(obj.key for obj in s3.Bucket(bucket).objects.all())


@pytest.fixture
def list_keys():
    return bucket_keys


@pytest.fixture
def bare_repo():
    """Factory creating a bare repository layout at a given path."""
    return make_bare_repo


@pytest.fixture
def tree_snapshot(tmp_path):
    """Snapshot of every path under tmp_path, for mutation checks."""
    def snapshot():
        return sorted(os.path.relpath(os.path.join(d, f), tmp_path)
                      for d, _, files in os.walk(tmp_path) for f in files)
    return snapshot

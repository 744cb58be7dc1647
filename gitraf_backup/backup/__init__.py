"""
Backup module for gitraf-backup.

This module handles the core backup functionality including:
- Run locking
- Repository discovery
- Archive and mirror transfer
- Storage (S3 and S3-compatible)
- Retention policy enforcement
- Run orchestration
"""

from .executor import Orchestrator, DependencyError, run_backup
from .lock import LockManager, LockError, AlreadyRunningError
from .scanner import RepositoryScanner
from .archive import ArchiveBuilder
from .storage import S3Storage, StorageError
from .retention import RetentionSweeper

__all__ = [
    'Orchestrator',
    'DependencyError',
    'run_backup',
    'LockManager',
    'LockError',
    'AlreadyRunningError',
    'RepositoryScanner',
    'ArchiveBuilder',
    'S3Storage',
    'StorageError',
    'RetentionSweeper'
]

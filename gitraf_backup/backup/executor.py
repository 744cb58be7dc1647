"""
Backup orchestrator - sequences a complete backup run.

Workflow (execute mode):
1. Validate configuration and dependencies
2. Acquire the run lock
3. Scan the repository root
4. Transfer each repository (archive or mirror), continuing past failures
5. Sweep artifacts older than the retention period
6. Release the lock and report the RunResult
"""

import os
import time
import logging
import importlib.util
from datetime import datetime
from typing import Optional

from gitraf_backup.config import BackupConfig, ConfigurationError, PreflightError
from gitraf_backup.models import (
    BackupJob, RunMode, RunResult, Severity, TransferError, TransferMode
)
from .archive import ArchiveBuilder, MIRROR_DIRNAME
from .lock import LockManager
from .retention import RetentionSweeper
from .scanner import RepositoryScanner
from .storage import S3Storage, StorageError


logger = logging.getLogger(__name__)


class DependencyError(PreflightError):
    """Raised when something the run needs is not available."""
    pass


def module_available(name: str) -> bool:
    return importlib.util.find_spec(name) is not None


def is_mirror_key(key: str, prefix: str) -> bool:
    """True for keys inside a {prefix}/{repository}/latest/ mirror tree."""
    prefix = prefix.strip('/')
    relative = key[len(prefix) + 1:] if prefix and key.startswith(prefix + '/') else key
    parts = relative.split('/')
    return len(parts) > 2 and parts[1] == MIRROR_DIRNAME


class Orchestrator:
    """
    Orchestrates list, dry-run and execute runs for one configuration.
    """

    def __init__(
        self,
        config: BackupConfig,
        storage=None,
        scanner: Optional[RepositoryScanner] = None,
        lock_manager: Optional[LockManager] = None,
        check_bucket: bool = False
    ):
        """
        Initialize orchestrator.

        Args:
            config: Resolved, immutable run configuration
            storage: Object store client (S3Storage built from config if None)
            scanner: Repository scanner (default RepositoryScanner)
            lock_manager: Run lock (LockManager on config.lock_file if None)
            check_bucket: Also verify bucket access during pre-flight
        """
        self.config = config
        self.storage = storage
        self.scanner = scanner or RepositoryScanner()
        self.lock_manager = lock_manager or LockManager(config.lock_file)
        self.check_bucket = check_bucket
        self.result = None
        self._started = None

    def run(self, mode=RunMode.EXECUTE) -> RunResult:
        """
        Run in the given mode.

        Args:
            mode: RunMode or its string value

        Returns:
            RunResult for the run

        Raises:
            PreflightError: Configuration, dependency or lock failure before any job
        """
        mode = RunMode(mode)
        self.result = RunResult(mode=mode)
        self._started = time.monotonic()

        try:
            if mode == RunMode.LIST:
                self._list()
            elif mode == RunMode.DRY_RUN:
                self._dry_run()
            else:
                self._execute()
        finally:
            self.result.duration_seconds = time.monotonic() - self._started

        return self.result

    def _list(self):
        """Enumerate candidates without touching the lock or the store."""
        self._check_root()
        self.result.repositories = list(self.scanner.scan(self.config.repos_dir))
        self._log(f"Found {len(self.result.repositories)} repositories in {self.config.repos_dir}")

    def _dry_run(self):
        """Validate everything an execute run needs, then stop."""
        self._log("DRY RUN - No changes will be made")
        self._preflight()
        self.result.repositories = list(self.scanner.scan(self.config.repos_dir))
        self.result.destination = self.config.destination
        self._log(f"Would backup repositories from: {self.config.repos_dir}")
        self._log(f"To S3 bucket: {self.config.destination}")

        holder = self.lock_manager.holder()
        if holder is not None:
            self._log(
                f"Lock {self.config.lock_file} is held by PID {holder}; a run now would be refused",
                Severity.WARN
            )

    def _execute(self):
        self._log("=========================================")
        self._log("gitraf S3 Backup starting")
        self._log("=========================================")

        self._preflight()
        self.result.destination = self.config.destination

        # Lock is released on every path out of this block
        with self.lock_manager:
            self._sync_repositories()
            self._cleanup_old_backups()

        if self.result.ok:
            self._log("Backup completed successfully")
        else:
            self._log("Backup completed with some failures", Severity.WARN)
        self.result.duration_seconds = time.monotonic() - self._started
        self._log(self.result.summary())
        self._log(f"Total duration: {self.result.duration_seconds:.0f} seconds")
        self._log("=========================================")

    def _sync_repositories(self):
        self._log(f"Starting repository sync from: {self.config.repos_dir}")

        builder = ArchiveBuilder(self.config, self.storage)
        timestamp = datetime.now()

        for repo in self.scanner.scan(self.config.repos_dir):
            job = BackupJob(repository=repo, timestamp=timestamp)
            self.result.repositories.append(repo)

            outcome = builder.transfer(job)
            if isinstance(outcome, TransferError):
                self.result.record_failure(outcome)
                self._log(f"Failed to backup: {repo.name} ({outcome.reason})", Severity.ERROR)
            else:
                self.result.record_success(outcome)

        self._log(
            f"Sync completed. Backed up: {self.result.succeeded}, "
            f"Failed: {self.result.failed}"
        )

    def _cleanup_old_backups(self):
        prefix = self.config.prefix
        sweeper = RetentionSweeper(
            self.storage,
            exclude=lambda key: is_mirror_key(key, prefix)
        )
        self.result.deleted = sweeper.sweep(prefix, self.config.retention_days)
        self.result.sweep_errors = list(sweeper.errors)

        if self.config.retention_days > 0:
            self._log(f"Retention cleanup deleted {self.result.deleted} objects")
        for error in sweeper.errors:
            self._log(error, Severity.ERROR)

    def _check_root(self):
        if not os.path.isdir(self.config.repos_dir):
            raise ConfigurationError(f"Repository directory not found: {self.config.repos_dir}")

    def _preflight(self):
        """
        Fail fast on configuration and dependency problems.

        Raises:
            ConfigurationError: If the configuration is invalid
            DependencyError: If a required dependency is missing
        """
        self.config.validate()
        self._check_dependencies()

        if self.check_bucket:
            try:
                self.storage.test_connection()
            except StorageError as e:
                raise ConfigurationError(str(e))

    def _check_dependencies(self):
        missing = []

        if self.config.transfer_mode == TransferMode.ARCHIVE:
            if not module_available('zlib'):
                missing.append('zlib (gzip support)')

        if self.storage is None:
            try:
                self.storage = S3Storage(
                    bucket_name=self.config.s3_bucket,
                    profile=self.config.aws_profile,
                    region=self.config.aws_region,
                    endpoint_url=self.config.s3_endpoint_url
                )
            except StorageError as e:
                missing.append(f"S3 client ({e})")

        if missing:
            raise DependencyError(f"Missing dependencies: {', '.join(missing)}")

    def _log(self, message: str, severity: Severity = Severity.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            severity: Severity of the message
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.result.logs.append(f"[{timestamp}] [{severity.name}] {message}")
        logger.log(severity.level, message)


def run_backup(config: BackupConfig, mode=RunMode.EXECUTE, **kwargs) -> RunResult:
    """
    Run a backup with the given configuration.

    Args:
        config: Resolved configuration
        mode: RunMode or its string value
        **kwargs: Passed to Orchestrator

    Returns:
        RunResult for the run
    """
    orchestrator = Orchestrator(config, **kwargs)
    return orchestrator.run(mode)

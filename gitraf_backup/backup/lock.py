"""
Single-instance guard for backup runs.

The lock is a file at a well-known path. The owning process keeps an
exclusive flock on it for the whole run and records its PID inside. A file
nobody holds a flock on is stale (its owner died) and is taken over.
"""

import os
import fcntl
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from gitraf_backup.config import PreflightError


logger = logging.getLogger(__name__)

# Retries when the file we locked was unlinked by its releasing owner
MAX_ATTEMPTS = 5


class LockError(PreflightError):
    """Raised when the lock file cannot be created or read."""
    pass


class AlreadyRunningError(LockError):
    """Raised when a live process already holds the lock."""

    def __init__(self, holder_pid: int, lock_path: str):
        self.holder_pid = holder_pid
        self.lock_path = lock_path
        super().__init__(f"Backup already running (PID: {holder_pid}, lock: {lock_path})")


@dataclass(frozen=True)
class Lock:
    """A held lock record"""
    path: str
    pid: int
    acquired_at: datetime


def _parse_pid(content: str) -> int:
    try:
        return int(content.strip())
    except ValueError:
        # Empty or unreadable: holder has not written its PID yet
        return 0


def _same_file(path: str, fd: int) -> bool:
    """True while path still names the file open on fd."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return False
    fst = os.fstat(fd)
    return (st.st_dev, st.st_ino) == (fst.st_dev, fst.st_ino)


class LockManager:
    """
    Exclusive lock around a backup run.

    Use as a context manager so the lock is released on every exit path:

        with LockManager('/var/run/gitraf-backup.lock'):
            ...
    """

    def __init__(self, path: str):
        """
        Initialize lock manager.

        Args:
            path: Lock file location
        """
        self.path = path
        self.lock = None
        self._file = None

    def acquire(self) -> Lock:
        """
        Take the lock, replacing a stale record if one is found.

        Returns:
            Lock record for the current process

        Raises:
            AlreadyRunningError: If a live process holds the lock
            LockError: If the lock file cannot be opened or written
        """
        pid = os.getpid()

        for _ in range(MAX_ATTEMPTS):
            try:
                fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
            except OSError as e:
                raise LockError(f"Failed to create lock file {self.path}: {e}")

            lock_file = os.fdopen(fd, 'r+')
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                holder = _parse_pid(lock_file.read())
                lock_file.close()
                raise AlreadyRunningError(holder, self.path)
            except OSError as e:
                lock_file.close()
                raise LockError(f"Failed to lock {self.path}: {e}")

            if not _same_file(self.path, lock_file.fileno()):
                # Previous owner released and unlinked it after our open
                lock_file.close()
                continue

            try:
                previous = _parse_pid(lock_file.read())
                if previous and previous != pid:
                    logger.warning(f"Replacing stale lock {self.path} (PID: {previous})")
                lock_file.seek(0)
                lock_file.truncate()
                lock_file.write(f"{pid}\n")
                lock_file.flush()
                os.fsync(lock_file.fileno())
            except OSError as e:
                lock_file.close()
                raise LockError(f"Failed to write lock file {self.path}: {e}")

            self._file = lock_file
            self.lock = Lock(path=self.path, pid=pid, acquired_at=datetime.now())
            logger.debug(f"Acquired lock {self.path} (PID: {pid})")
            return self.lock

        raise LockError(f"Could not acquire lock {self.path} after {MAX_ATTEMPTS} attempts")

    def release(self):
        """Remove the lock file if it is still ours, then drop the flock."""
        if self.lock is None:
            return

        try:
            if _same_file(self.path, self._file.fileno()):
                os.remove(self.path)
                logger.debug(f"Released lock {self.path}")
            else:
                logger.warning(f"Lock {self.path} was replaced by another file, leaving it")
        except OSError as e:
            # flock is still dropped below, so the leftover file is stale
            logger.error(f"Failed to remove lock file {self.path}: {e}")
        finally:
            self._file.close()
            self._file = None
            self.lock = None

    def holder(self) -> Optional[int]:
        """
        PID of the process holding the lock.

        Returns:
            The holder's PID (0 if it has not recorded one yet), or None when
            the lock is free or stale
        """
        try:
            fd = os.open(self.path, os.O_RDONLY)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LockError(f"Failed to read lock file {self.path}: {e}")

        with os.fdopen(fd, 'r') as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)
            except BlockingIOError:
                return _parse_pid(lock_file.read())
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            return None

    def __enter__(self) -> Lock:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

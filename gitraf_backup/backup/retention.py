"""
Retention policy enforcement for backups.

Deletes objects under the backup prefix whose modification date is older
than the configured number of days. Dates are compared as UTC calendar days.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from .storage import StorageError, build_key


logger = logging.getLogger(__name__)


def object_date(last_modified: datetime) -> date:
    """UTC calendar date of an object's modification time."""
    if last_modified.tzinfo is None:
        return last_modified.date()
    return last_modified.astimezone(timezone.utc).date()


def cutoff_date(retention_days: int, today: Optional[date] = None) -> date:
    """First calendar date that is retained."""
    if today is None:
        today = datetime.now(timezone.utc).date()
    return today - timedelta(days=retention_days)


class RetentionSweeper:
    """
    Removes backup objects older than a retention period.

    A failed delete is recorded in `errors` and the sweep moves on to the
    next object.
    """

    def __init__(self, storage, exclude: Optional[Callable[[str], bool]] = None):
        """
        Initialize retention sweeper.

        Args:
            storage: Object store client bound to the backup bucket
            exclude: Optional predicate; keys for which it returns True are never deleted
        """
        self.storage = storage
        self.exclude = exclude
        self.errors: List[str] = []

    def sweep(self, prefix: str, retention_days: int, today: Optional[date] = None) -> int:
        """
        Delete objects under prefix dated strictly before today - retention_days.

        Args:
            prefix: Key prefix holding the backups
            retention_days: Retention period in days; 0 or less disables the sweep
            today: Reference date (default: current UTC date)

        Returns:
            Number of objects deleted
        """
        self.errors = []

        if retention_days <= 0:
            logger.info("Retention disabled, skipping cleanup")
            return 0

        cutoff = cutoff_date(retention_days, today)
        logger.info(f"Cleaning up backups older than {retention_days} days (before {cutoff.isoformat()})")

        list_prefix = build_key(prefix)
        if list_prefix:
            list_prefix += '/'

        try:
            objects = self.storage.list_objects(list_prefix)
        except StorageError as e:
            message = f"Failed to list objects under {list_prefix or '/'}: {e}"
            logger.error(message)
            self.errors.append(message)
            return 0

        deleted_count = 0
        for obj in objects:
            key = obj['Key']

            if self.exclude is not None and self.exclude(key):
                continue

            if object_date(obj['LastModified']) >= cutoff:
                continue

            logger.info(f"Deleting old backup: {key}")
            try:
                self.storage.delete(key)
                deleted_count += 1
            except StorageError as e:
                message = f"Failed to delete {key}: {e}"
                logger.error(message)
                self.errors.append(message)

        return deleted_count

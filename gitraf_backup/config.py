"""
Run configuration for gitraf-backup.

Values are resolved from the environment (the same variable names the
backup.conf file uses) and can be overridden from the command line. The
resulting record is frozen and passed explicitly to every component.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional, Mapping

from .models import TransferMode


class PreflightError(Exception):
    """Raised when a run must abort before any repository is processed."""
    pass


class ConfigurationError(PreflightError):
    """Raised when the resolved configuration is invalid or incomplete."""
    pass


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class BackupConfig:
    """Base configuration"""

    # Repositories
    repos_dir: str = '/var/lib/gitraf/repos'

    # Object store
    s3_bucket: str = ''
    s3_prefix: str = 'gitraf-backup'
    aws_profile: Optional[str] = None
    aws_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None

    # Policy
    retention_days: int = 30
    transfer_mode: TransferMode = TransferMode.ARCHIVE

    # Runtime
    lock_file: str = '/var/run/gitraf-backup.lock'
    log_dir: Optional[str] = '/var/log/gitraf-backup'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BackupConfig':
        """
        Build a configuration from environment variables.

        TRANSFER_MODE takes precedence over the legacy COMPRESSION toggle
        (COMPRESSION=true selects archive mode, false selects mirror mode).

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            BackupConfig instance

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        if env.get('TRANSFER_MODE'):
            transfer_mode = TransferMode.parse(env['TRANSFER_MODE'])
        elif env.get('COMPRESSION'):
            transfer_mode = TransferMode.ARCHIVE if _parse_bool(env['COMPRESSION']) else TransferMode.MIRROR
        else:
            transfer_mode = defaults.transfer_mode

        retention_days = defaults.retention_days
        if env.get('RETENTION_DAYS'):
            retention_days = _parse_int('RETENTION_DAYS', env['RETENTION_DAYS'])

        return cls(
            repos_dir=env.get('REPOS_DIR') or defaults.repos_dir,
            s3_bucket=env.get('S3_BUCKET', defaults.s3_bucket),
            s3_prefix=env.get('S3_PREFIX', defaults.s3_prefix),
            aws_profile=env.get('AWS_PROFILE') or None,
            aws_region=env.get('AWS_REGION') or env.get('AWS_DEFAULT_REGION') or None,
            s3_endpoint_url=env.get('S3_ENDPOINT_URL') or None,
            retention_days=retention_days,
            transfer_mode=transfer_mode,
            lock_file=env.get('LOCK_FILE') or defaults.lock_file,
            log_dir=env.get('LOG_DIR', defaults.log_dir) or None,
        )

    def override(self, **changes) -> 'BackupConfig':
        """Return a copy with the given non-None fields replaced."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if isinstance(changes.get('transfer_mode'), str):
            changes['transfer_mode'] = TransferMode.parse(changes['transfer_mode'])
        return replace(self, **changes)

    @property
    def prefix(self) -> str:
        """Key prefix without surrounding slashes."""
        return self.s3_prefix.strip('/')

    @property
    def destination(self) -> str:
        """Human readable destination URL."""
        if self.prefix:
            return f"s3://{self.s3_bucket}/{self.prefix}/"
        return f"s3://{self.s3_bucket}/"

    def validate(self):
        """
        Check the values a run cannot proceed without.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        if not self.s3_bucket:
            raise ConfigurationError("S3_BUCKET not configured")

        if self.retention_days < 0:
            raise ConfigurationError(
                f"RETENTION_DAYS must be zero or positive, got {self.retention_days}"
            )

        if not isinstance(self.transfer_mode, TransferMode):
            raise ConfigurationError(f"Invalid transfer mode: {self.transfer_mode!r}")

        if not os.path.isdir(self.repos_dir):
            raise ConfigurationError(f"Repository directory not found: {self.repos_dir}")

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


# Process exit statuses
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_DEGRADED = 2


class TransferMode(str, Enum):
    """How a repository is copied to the object store"""
    ARCHIVE = 'archive'
    MIRROR = 'mirror'

    @classmethod
    def parse(cls, value: str) -> 'TransferMode':
        try:
            return cls(value.strip().lower())
        except ValueError:
            # Imported here to avoid a cycle with config
            from .config import ConfigurationError
            raise ConfigurationError(
                f"Invalid transfer mode: {value!r}. "
                f"Valid options: {[m.value for m in cls]}"
            )


class RunMode(str, Enum):
    """What a single invocation does"""
    EXECUTE = 'execute'
    DRY_RUN = 'dry-run'
    LIST = 'list'


class RepositoryKind(str, Enum):
    """Rule a repository was detected by"""
    SUFFIXED = 'suffixed'
    BARE_LAYOUT = 'bare_layout'


class Severity(Enum):
    """Log severity attached to run log lines"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR

    @property
    def level(self) -> int:
        return self.value


@dataclass(frozen=True)
class RepositoryRef:
    """A bare repository found under the repository root"""
    name: str
    path: str
    kind: RepositoryKind

    def __repr__(self):
        return f'<RepositoryRef {self.name} ({self.kind.value})>'


@dataclass(frozen=True)
class BackupJob:
    """One repository to transfer in one run"""
    repository: RepositoryRef
    timestamp: datetime

    @property
    def stamp(self) -> str:
        return self.timestamp.strftime('%Y%m%d_%H%M%S')


@dataclass(frozen=True)
class Artifact:
    """Result of a successful transfer"""
    repository: str
    mode: TransferMode
    name: str
    key: str
    size_bytes: int = 0
    uploaded: int = 0
    deleted: int = 0


@dataclass(frozen=True)
class TransferError:
    """Result of a failed transfer"""
    repository: str
    reason: str

    def __str__(self):
        return f"{self.repository}: {self.reason}"


@dataclass
class RunResult:
    """Aggregated outcome of one invocation"""
    mode: RunMode
    started_at: datetime = field(default_factory=datetime.now)
    succeeded: int = 0
    failed: int = 0
    failures: List[TransferError] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    repositories: List[RepositoryRef] = field(default_factory=list)
    deleted: int = 0
    sweep_errors: List[str] = field(default_factory=list)
    destination: Optional[str] = None
    duration_seconds: float = 0.0
    logs: List[str] = field(default_factory=list)

    def record_success(self, artifact: Artifact):
        self.succeeded += 1
        self.artifacts.append(artifact)

    def record_failure(self, error: TransferError):
        self.failed += 1
        self.failures.append(error)

    @property
    def failed_names(self) -> List[str]:
        return [f.repository for f in self.failures]

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.sweep_errors

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.ok else EXIT_DEGRADED

    def summary(self) -> str:
        text = (
            f"Backed up: {self.succeeded}, Failed: {self.failed}, "
            f"Deleted old: {self.deleted}, Duration: {self.duration_seconds:.1f}s"
        )
        if self.failures:
            text += f"\nFailed repositories: {', '.join(self.failed_names)}"
        if self.sweep_errors:
            text += f"\nRetention errors: {len(self.sweep_errors)}"
        return text

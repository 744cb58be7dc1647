"""
Repository discovery.

A backup candidate is an immediate subdirectory of the repository root that
either carries the conventional `.git` suffix or has the bare repository
layout (both `objects/` and `refs/` present).
"""

import os
import logging
from pathlib import Path
from typing import Iterator

from gitraf_backup.models import RepositoryRef, RepositoryKind


logger = logging.getLogger(__name__)

BARE_SUFFIX = '.git'


def repository_name(directory: Path) -> str:
    """Name used for keys and artifact files: directory name without `.git`."""
    name = directory.name
    if name.endswith(BARE_SUFFIX) and len(name) > len(BARE_SUFFIX):
        return name[:-len(BARE_SUFFIX)]
    return name


def has_bare_layout(directory: Path) -> bool:
    return (directory / 'objects').is_dir() and (directory / 'refs').is_dir()


class RepositoryScanner:
    """Enumerates bare repositories below a root directory."""

    def scan(self, root: str) -> Iterator[RepositoryRef]:
        """
        Yield repositories found directly under root, ordered by name.

        Each call walks the directory again; nothing is cached between calls.

        Args:
            root: Repository root directory

        Yields:
            RepositoryRef for each candidate, once per resolved path. Names
            are unique within one scan so artifact keys never collide.
        """
        root_path = Path(root).expanduser()
        seen = set()
        names = set()

        for entry in sorted(root_path.iterdir(), key=lambda p: p.name):
            if not entry.is_dir():
                continue

            if entry.name.endswith(BARE_SUFFIX):
                kind = RepositoryKind.SUFFIXED
            elif has_bare_layout(entry):
                kind = RepositoryKind.BARE_LAYOUT
            else:
                logger.debug(f"Skipping non-repository directory: {entry}")
                continue

            resolved = entry.resolve()
            if resolved in seen:
                continue
            seen.add(resolved)

            name = repository_name(entry)
            if name in names:
                # beta and beta.git both strip to beta; keep the suffix on the later one
                name = entry.name
            names.add(name)

            yield RepositoryRef(
                name=name,
                path=os.fspath(resolved),
                kind=kind
            )

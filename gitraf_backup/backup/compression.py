"""
Compressed snapshots of repository directories.

Archives are gzip compressed tarballs containing the repository directory
under its own name, so extracting one recreates `<name>.git/` (or `<name>/`).
"""

import os
import tarfile
from pathlib import Path


ARCHIVE_EXTENSION = 'tar.gz'


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_archive(source_path: str, output_path: str) -> str:
    """
    Create a gzip compressed tar archive of a directory.

    Args:
        source_path: Directory to archive
        output_path: Path where archive should be created (without extension)

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
    """
    source = Path(source_path)
    archive_path = f"{output_path}.{ARCHIVE_EXTENSION}"

    if not source.is_dir():
        raise CompressionError(f"Path does not exist or is not a directory: {source_path}")

    try:
        with tarfile.open(archive_path, 'w:gz') as tar:
            # Only the directory name goes into the archive, not the full path
            tar.add(source, arcname=source.name, recursive=True)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def generate_archive_name(repository_name: str, stamp: str) -> str:
    """
    Generate the artifact file name for a repository.

    Format: {repository_name}_{YYYYMMDD_HHMMSS}.tar.gz

    Args:
        repository_name: Name of the repository (without .git)
        stamp: Run timestamp formatted as YYYYMMDD_HHMMSS

    Returns:
        Filename (without path)
    """
    return f"{repository_name}_{stamp}.{ARCHIVE_EXTENSION}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")

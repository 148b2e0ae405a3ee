import logging
import stat
from pathlib import Path

from .constants import APP_NAME, EXEC_BITS

logger = logging.getLogger(APP_NAME)


def is_candidate_binary(path: Path) -> bool:
    """Decides whether a build output entry is a publishable binary.

    A candidate is a regular file (not a directory or symlink) with no file
    extension and at least one execute bit set. Extension-bearing
    executables (shared objects, program artifacts such as '.so') are
    skipped.

    Args:
        path (Path): The entry to inspect.

    Returns:
        bool: True if the entry qualifies.
    """
    try:
        mode = path.lstat().st_mode
    except OSError:
        return False

    if not stat.S_ISREG(mode):
        return False
    if path.suffix:
        return False
    return bool(mode & EXEC_BITS)


def scan_artifacts(directory: Path) -> list[Path]:
    """Lists the candidate binaries at the top level of a build directory.

    Args:
        directory (Path): The build output directory.

    Returns:
        list[Path]: Candidate binaries sorted by file name.

    Raises:
        OSError: If the directory cannot be read (e.g. it does not exist).
    """
    return sorted(
        (entry for entry in directory.iterdir() if is_candidate_binary(entry)),
        key=lambda p: p.name,
    )


def purge_artifacts(directory: Path) -> list[Path]:
    """Deletes every candidate binary so stale names are never re-uploaded.

    Best effort: a missing directory (first build) and individual removal
    failures are tolerated.

    Args:
        directory (Path): The build output directory.

    Returns:
        list[Path]: The binaries that were removed.
    """
    try:
        candidates = scan_artifacts(directory)
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning(f"PURGE {directory}: could not list artifacts: {e}")
        return []

    removed = []
    for binary in candidates:
        try:
            binary.unlink()
            removed.append(binary)
        except OSError as e:
            logger.debug(f"PURGE {binary}: {e}")
    return removed

import logging
from pathlib import Path

from .artifacts import purge_artifacts
from .constants import APP_NAME, ARTIFACT_SUBDIR
from .errors import BuildError
from .git_wrapper import GitRepo
from .system import run_process

logger = logging.getLogger(APP_NAME)


def artifact_dir(repo: GitRepo) -> Path:
    """Returns the release output directory of a repository."""
    return repo.path / ARTIFACT_SUBDIR


async def rebuild(repo: GitRepo, build_tool: Path) -> Path:
    """Purges stale binaries and runs a release build.

    Args:
        repo (GitRepo): The repository, already reset to the commit to build.
        build_tool (Path): The build tool executable (cargo).

    Returns:
        Path: The directory holding the fresh artifacts.

    Raises:
        BuildError: If the build tool cannot be started or exits nonzero.
    """
    artifacts = artifact_dir(repo)

    # Remove existing binaries (ensures we stop uploading renamed/removed
    # packages).
    removed = purge_artifacts(artifacts)
    if removed:
        logger.debug(f"PURGED {repo.path.name}: {', '.join(p.name for p in removed)}")

    argv = [str(build_tool), "build", "--release"]
    try:
        result = await run_process(argv, cwd=repo.path, capture_stdout=False)
    except OSError as e:
        raise BuildError(f"Could not start {build_tool}: {e}") from e

    if not result.ok:
        raise BuildError(
            f"`{build_tool.name} build --release` failed in {repo.path} "
            f"(exit {result.returncode})",
            stderr=result.stderr,
        )

    return artifacts

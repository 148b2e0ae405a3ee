import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of an external command.

    Attributes:
        returncode (int): The exit status.
        stdout (str): Captured standard output (empty when discarded).
        stderr (str): Captured standard error.
    """

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_process(
    argv: list[str],
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    capture_stdout: bool = True,
) -> ProcessResult:
    """Runs a command asynchronously and waits for it to exit.

    The event loop stays free while the process runs. If the awaiting task is
    cancelled, the child is killed before the cancellation propagates so no
    build or git process outlives the daemon.

    Args:
        argv (list[str]): The program and its arguments.
        cwd (Path | None, optional): Working directory. Defaults to None.
        env (dict[str, str] | None, optional): Full environment for the child.
            Defaults to None (inherit).
        capture_stdout (bool, optional): Whether to keep stdout. Large build
            logs are discarded when False. Defaults to True.

    Returns:
        ProcessResult: Exit status and decoded output.

    Raises:
        FileNotFoundError: If the program does not exist.
    """
    logger.debug(f"EXEC {' '.join(argv)} (cwd={cwd})")
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        raise

    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )


def child_env(overrides: dict[str, str] | None = None) -> dict[str, str] | None:
    """Returns a copy of the current environment with overrides applied.

    Returns None when there is nothing to override so children simply inherit.
    """
    if not overrides:
        return None
    env = os.environ.copy()
    env.update(overrides)
    return env

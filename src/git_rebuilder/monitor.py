"""Per-target poll cycle: fetch, reset, compare, rebuild and publish."""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from .builder import rebuild
from .constants import APP_NAME, HASH_LEN
from .errors import BuildError, FetchError, GitError, UploadError
from .git_wrapper import GitRepo
from .uploader import upload_binaries

logger = logging.getLogger(APP_NAME)


class CycleOutcome(enum.Enum):
    """How a single poll cycle ended."""

    SKIPPED = "skipped"
    FETCH_FAILED = "fetch_failed"
    RESET_FAILED = "reset_failed"
    UNCHANGED = "unchanged"
    BUILD_FAILED = "build_failed"
    UPLOAD_FAILED = "upload_failed"
    REBUILT = "rebuilt"
    REBUILT_PARTIAL = "rebuilt_partial"
    ERROR = "error"

    @property
    def failed(self) -> bool:
        """Whether the cycle should count towards the target's backoff."""
        return self in {
            CycleOutcome.FETCH_FAILED,
            CycleOutcome.RESET_FAILED,
            CycleOutcome.BUILD_FAILED,
            CycleOutcome.UPLOAD_FAILED,
            CycleOutcome.ERROR,
        }


@dataclass(frozen=True)
class SharedState:
    """Resources shared read-only by every target.

    Attributes:
        build_tool (Path): The build tool executable.
        endpoint (str): The bin serve base URL.
        client (httpx.AsyncClient): The HTTP client used for uploads.
        poll_interval (int): Seconds between passes; first backoff step.
        max_backoff (int): Cap for a failing target's delay.
    """

    build_tool: Path
    endpoint: str
    client: httpx.AsyncClient
    poll_interval: int
    max_backoff: int


@dataclass
class TargetState:
    """Mutable state of one monitored (repository, branch) pair.

    Attributes:
        repo_index (int): Index of the repository in the server's registry.
        branch (str): The tracked branch.
        executables (frozenset[str] | None): Binaries to publish, None for all.
        last_build (bytes): Raw hash of the last successfully built commit.
        uploaded (dict[str, bytes]): Hash each binary was last published at.
        failures (int): Consecutive failed cycles.
        next_attempt (float): Monotonic time before which the target is skipped.
    """

    repo_index: int
    branch: str
    executables: frozenset[str] | None
    last_build: bytes = bytes(HASH_LEN)
    uploaded: dict[str, bytes] = field(default_factory=dict)
    failures: int = 0
    next_attempt: float = 0.0

    def stale_binaries(self) -> list[str]:
        """Configured binaries whose last upload is behind last_build."""
        if self.last_build == bytes(HASH_LEN):
            return []
        names = self.executables if self.executables is not None else self.uploaded
        return sorted(n for n in names if self.uploaded.get(n) != self.last_build)


class TargetMonitor:
    """Runs poll cycles for one target against its repository.

    Targets tracking different branches of one work tree must pass the same
    lock: a cycle holds it from the reset until the upload finishes, so the
    checked-out tree cannot change under a running build.
    """

    def __init__(
        self, state: TargetState, repo: GitRepo, lock: asyncio.Lock | None = None
    ) -> None:
        self.state = state
        self.repo = repo
        self.lock = lock if lock is not None else asyncio.Lock()

    @property
    def label(self) -> str:
        return f"{self.repo.path.name}@{self.state.branch}"

    def delay(self, shared: SharedState, now: float | None = None) -> float:
        """Seconds to wait before this target's next cycle."""
        now = time.monotonic() if now is None else now
        return max(float(shared.poll_interval), self.state.next_attempt - now)

    async def check(self, shared: SharedState) -> CycleOutcome:
        """Runs one cycle unless the target is backing off.

        Unexpected exceptions are logged and reported as ERROR so a broken
        target never stops the others.

        Args:
            shared (SharedState): The process-wide resources.

        Returns:
            CycleOutcome: How the cycle ended.
        """
        if time.monotonic() < self.state.next_attempt:
            return CycleOutcome.SKIPPED

        try:
            outcome = await self._cycle(shared)
        except Exception:
            logger.exception(f"LOOP ERROR {self.label}")
            outcome = CycleOutcome.ERROR

        self._record(outcome, shared)
        return outcome

    def _record(self, outcome: CycleOutcome, shared: SharedState) -> None:
        state = self.state
        if not outcome.failed:
            if state.failures:
                logger.info(f"RECOVERED {self.label} after {state.failures} failures.")
            state.failures = 0
            state.next_attempt = 0.0
            return

        state.failures += 1
        delay = min(shared.poll_interval * 2 ** (state.failures - 1), shared.max_backoff)
        state.next_attempt = time.monotonic() + delay
        logger.info(
            f"BACKOFF {self.label}: {state.failures} consecutive failures, "
            f"next attempt in {delay}s."
        )

    async def _cycle(self, shared: SharedState) -> CycleOutcome:
        state = self.state
        repo = self.repo

        # Update repo remote view.
        logger.debug(f"FETCH {self.label}")
        try:
            await repo.fetch()
        except FetchError as e:
            logger.warning(f"FETCH FAILED {self.label}: {e}")
            return CycleOutcome.FETCH_FAILED

        async with self.lock:
            return await self._build_head(shared)

    async def _build_head(self, shared: SharedState) -> CycleOutcome:
        state = self.state
        repo = self.repo

        # Reset to the latest of the target branch.
        try:
            await repo.reset_hard(state.branch)
            head = await repo.head_hash()
        except GitError as e:
            logger.error(f"RESET FAILED {self.label}: {e}")
            return CycleOutcome.RESET_FAILED

        # Check if we have already built this commit.
        if head == state.last_build:
            return CycleOutcome.UNCHANGED

        logger.info(f"REBUILD {self.label}: new commit {head.hex()}")
        try:
            artifacts = await rebuild(repo, shared.build_tool)
        except BuildError as e:
            logger.warning(f"BUILD FAILED {self.label}: {e}")
            if e.stderr:
                logger.warning(f"BUILD OUTPUT {self.label}:\n{e.stderr.rstrip()}")
            return CycleOutcome.BUILD_FAILED

        try:
            outcomes = await upload_binaries(
                artifacts, state.executables, head, shared.endpoint, shared.client
            )
        except UploadError as e:
            logger.warning(f"UPLOAD FAILED {self.label}: {e}")
            return CycleOutcome.UPLOAD_FAILED

        # The build succeeded, so the commit counts as built even if some
        # binaries were rejected by the endpoint.
        state.last_build = head
        for name, ok in outcomes.items():
            if ok:
                state.uploaded[name] = head

        stale = sorted(
            set(state.stale_binaries()) | {n for n, ok in outcomes.items() if not ok}
        )
        if stale:
            logger.warning(f"STALE {self.label}: {', '.join(stale)} not published.")
            return CycleOutcome.REBUILT_PARTIAL

        logger.info(f"BUILT {self.label} @ {head.hex()}")
        return CycleOutcome.REBUILT

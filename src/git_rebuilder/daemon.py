import asyncio
import contextlib
import logging
import signal
import sys
from collections import Counter
from logging.handlers import RotatingFileHandler
from pathlib import Path

import httpx

from .config import Config, TargetSpec
from .constants import APP_NAME, GIT_BIN, LOG_FILE_NAME, MAX_LOG_SIZE
from .errors import ConfigError, ProvisionError
from .git_wrapper import GitRepo
from .monitor import CycleOutcome, SharedState, TargetMonitor, TargetState
from .provision import open_or_provision

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

# Uploads may be large; only connecting is bounded.
HTTP_TIMEOUT = httpx.Timeout(None, connect=10.0)


class Server:
    """Owns every monitored target and the resources they share.

    Repositories live in a registry (`repositories`) for the whole run; each
    TargetState refers to its repository by index, and targets resolving to
    the same work tree share one entry.

    Attributes:
        config (Config): The loaded configuration.
        build_tool (Path): The build tool executable.
        endpoint (str): The bin serve base URL.
        repositories (list[GitRepo]): The repository registry.
        locks (list[asyncio.Lock]): One lock per registry entry, shared by
            the monitors of every target on that work tree.
        monitors (list[TargetMonitor]): One monitor per provisioned target,
            in configuration order.
        stats (Counter[CycleOutcome]): Cycle outcomes seen so far.
    """

    def __init__(
        self,
        config: Config,
        build_tool: Path,
        endpoint: str,
        git_bin: str = GIT_BIN,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.build_tool = build_tool
        self.endpoint = endpoint
        self.git_bin = git_bin
        self._transport = transport
        self.repositories: list[GitRepo] = []
        self.locks: list[asyncio.Lock] = []
        self.monitors: list[TargetMonitor] = []
        self.stats: Counter[CycleOutcome] = Counter()

    def provision(self) -> None:
        """Opens or clones every target's repository.

        A target that cannot be provisioned is logged and excluded; the others
        are still monitored.

        Raises:
            ProvisionError: If targets are configured but none could be
                provisioned.
        """
        index_by_path: dict[Path, int] = {}
        owners: list[TargetSpec] = []

        for spec in self.config.targets:
            try:
                path = self.config.local_path(spec)
                key = path.resolve()
                if key not in index_by_path:
                    repo = open_or_provision(path, spec, git_bin=self.git_bin)
                    index_by_path[key] = len(self.repositories)
                    self.repositories.append(repo)
                    self.locks.append(asyncio.Lock())
                    owners.append(spec)
                else:
                    # The first target on a work tree decides its remote and
                    # credentials.
                    owner = owners[index_by_path[key]]
                    if (spec.repository, spec.ssh_key) != (
                        owner.repository,
                        owner.ssh_key,
                    ):
                        logger.warning(
                            f"SHARED {path}: {spec.repository}@{spec.branch} reuses the "
                            f"work tree and credentials of {owner.repository}."
                        )
            except (ConfigError, ProvisionError) as e:
                logger.error(f"PROVISION FAILED {spec.repository}@{spec.branch}: {e}")
                continue

            index = index_by_path[key]
            state = TargetState(
                repo_index=index, branch=spec.branch, executables=spec.executables
            )
            self.monitors.append(
                TargetMonitor(state, self.repositories[index], self.locks[index])
            )
            logger.info(f"TRACKING {path} @ {spec.branch}")

        if self.config.targets and not self.monitors:
            raise ProvisionError("No target could be provisioned.")

    def shared_state(self, client: httpx.AsyncClient) -> SharedState:
        return SharedState(
            build_tool=self.build_tool,
            endpoint=self.endpoint,
            client=client,
            poll_interval=self.config.daemon.poll_interval,
            max_backoff=self.config.daemon.max_backoff,
        )

    async def run_pass(self, shared: SharedState) -> list[CycleOutcome]:
        """Runs one cycle for every target, in configuration order."""
        outcomes = []
        for monitor in self.monitors:
            outcome = await monitor.check(shared)
            self.stats[outcome] += 1
            outcomes.append(outcome)
        return outcomes

    async def run(self, shared: SharedState) -> None:
        """Monitors all targets until cancelled."""
        if self.config.daemon.concurrent:
            await self._run_concurrent(shared)
            return

        while True:
            await self.run_pass(shared)
            await asyncio.sleep(shared.poll_interval)

    async def _run_concurrent(self, shared: SharedState) -> None:
        """Runs one task per target, reporting to a supervisor through a queue."""
        queue: asyncio.Queue[tuple[str, CycleOutcome]] = asyncio.Queue()
        async with asyncio.TaskGroup() as tg:
            for monitor in self.monitors:
                tg.create_task(self._target_loop(monitor, shared, queue))
            tg.create_task(self._supervise(queue))

    async def _target_loop(
        self,
        monitor: TargetMonitor,
        shared: SharedState,
        queue: asyncio.Queue[tuple[str, CycleOutcome]],
    ) -> None:
        while True:
            outcome = await monitor.check(shared)
            await queue.put((monitor.label, outcome))
            await asyncio.sleep(monitor.delay(shared))

    async def _supervise(self, queue: asyncio.Queue[tuple[str, CycleOutcome]]) -> None:
        while True:
            label, outcome = await queue.get()
            self.stats[outcome] += 1
            logger.debug(f"CYCLE {label}: {outcome.value}")
            queue.task_done()

    async def serve(self, stop: asyncio.Event, once: bool = False) -> None:
        """Runs the monitoring loop until it ends or `stop` is set.

        The loop and the stop event race; when the event wins, the loop task
        is cancelled and the in-flight cycle is interrupted at its current
        await (child processes are killed).

        Args:
            stop (asyncio.Event): The shutdown signal.
            once (bool, optional): Run a single pass instead of looping forever.
                Defaults to False.
        """
        async with httpx.AsyncClient(
            timeout=HTTP_TIMEOUT, transport=self._transport
        ) as client:
            shared = self.shared_state(client)
            work = self.run_pass(shared) if once else self.run(shared)
            loop_task = asyncio.create_task(work)
            stop_task = asyncio.create_task(stop.wait())

            done, _ = await asyncio.wait(
                {loop_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if stop_task in done:
                logger.info("Stop requested, shutting down.")
                loop_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await loop_task
                return

            stop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stop_task
            # Surface unexpected errors from the loop.
            loop_task.result()


def setup_logging(log_dir: Path | None = None, verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Args:
        log_dir (Path | None, optional): If set, logs are also written to a
            rotating file in this directory. Defaults to None.
        verbose (bool, optional): Enable debug output. Defaults to False.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Always log to stderr (captured by systemd).
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=MAX_LOG_SIZE,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


async def _serve_until_signalled(server: Server, once: bool) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await server.serve(stop, once=once)


def main(
    config: Config,
    build_tool: Path,
    endpoint: str,
    once: bool = False,
) -> int:
    """The daemon entry point: provision targets, then monitor them.

    Args:
        config (Config): The loaded configuration.
        build_tool (Path): The build tool executable.
        endpoint (str): The bin serve base URL.
        once (bool, optional): Run a single pass and exit. Defaults to False.

    Returns:
        int: The process exit code.
    """
    server = Server(config, build_tool, endpoint)
    try:
        server.provision()
    except ProvisionError as e:
        logger.critical(f"STARTUP FAILED: {e}")
        return 1

    logger.info(
        f"Monitoring {len(server.monitors)} targets "
        f"({len(server.repositories)} repositories), uploading to {endpoint}."
    )
    asyncio.run(_serve_until_signalled(server, once))
    return 0

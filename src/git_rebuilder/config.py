import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import APP_NAME, DEFAULT_MAX_BACKOFF, DEFAULT_POLL_INTERVAL
from .errors import ConfigError

logger = logging.getLogger(APP_NAME)

_TARGET_KEYS = {"repository", "ssh_key", "branch", "executables"}


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


def repository_name(url: str) -> str:
    """Derives the local directory name for a repository locator.

    The name is the last path component of the URL, where both '/' and the
    scp-style ':' count as separators, with one trailing '.git' removed.
    'git@host:org/repo.git', 'https://host/org/repo' and '/srv/git/repo.git/'
    all map to 'repo'.

    Args:
        url (str): A git URL or local path.

    Returns:
        str: The repository name.

    Raises:
        ConfigError: If no name can be derived.
    """
    trimmed = url.strip().rstrip("/")
    name = re.split(r"[/:]", trimmed)[-1].removesuffix(".git")
    if not name or name in (".", ".."):
        raise ConfigError(f"Failed to parse repository URL: {url!r}")
    return name


def _parse_executables(value: Any, where: str) -> frozenset[str]:
    """Validates an executable list, rejecting duplicates."""
    if not isinstance(value, list) or not all(
        isinstance(item, str) and item for item in value
    ):
        raise ConfigError(f"{where}: executables must be a list of names")

    duplicates = sorted({item for item in value if value.count(item) > 1})
    if duplicates:
        raise ConfigError(f"{where}: duplicate executables: {', '.join(duplicates)}")
    return frozenset(value)


@dataclass(frozen=True)
class TargetSpec:
    """A single (repository, branch, executables) monitoring unit.

    Attributes:
        repository (str): The URL or local path to clone from.
        branch (str): The branch to track on 'origin'.
        executables (frozenset[str] | None): Binary names to publish. None
            publishes every candidate binary.
        ssh_key (Path | None): Private key used when cloning over SSH.
        path (Path | None): Explicit work tree location. When unset, the
            repository lives under the config root.
    """

    repository: str
    branch: str
    executables: frozenset[str] | None
    ssh_key: Path | None = None
    path: Path | None = None


@dataclass(frozen=True)
class DaemonConfig:
    """Scheduling settings.

    Attributes:
        poll_interval (int): Seconds between passes over all targets, and the
            initial delay applied to a failing target.
        max_backoff (int): Upper bound for a failing target's delay.
        concurrent (bool): Run one task per target instead of a single loop.
    """

    poll_interval: int = DEFAULT_POLL_INTERVAL
    max_backoff: int = DEFAULT_MAX_BACKOFF
    concurrent: bool = False


@dataclass(frozen=True)
class Config:
    """Process-wide configuration, immutable once loaded.

    Attributes:
        root (Path): Directory holding the monitored repositories.
        targets (tuple[TargetSpec, ...]): Targets in processing order.
        daemon (DaemonConfig): Scheduling settings.
    """

    root: Path
    targets: tuple[TargetSpec, ...] = ()
    daemon: DaemonConfig = field(default_factory=DaemonConfig)

    def local_path(self, target: TargetSpec) -> Path:
        """Resolves where a target's work tree lives on disk."""
        if target.path is not None:
            return target.path.expanduser()
        return self.root.expanduser() / repository_name(target.repository)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Reads and validates a TOML config file.

        Two layouts are accepted and may be combined: a '[[targets]]' array of
        records, and a '[repositories.<name>]' table mapping branch names to
        executable lists for repositories already present under 'root'.

        Args:
            path (Path): The config file.

        Returns:
            Config: The parsed configuration.

        Raises:
            ConfigError: If the file is missing, malformed or incomplete.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Config not found: {path}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Builds a Config from already-decoded data."""
        if "root" not in data:
            raise ConfigError("Missing required config field: root")
        if not isinstance(data["root"], str) or not data["root"]:
            raise ConfigError("root: expected a directory path")
        root = Path(data["root"])

        records = data.get("targets", [])
        if not isinstance(records, list):
            raise ConfigError("targets: expected an array of tables ([[targets]])")
        repositories = data.get("repositories", {})
        if not isinstance(repositories, dict):
            raise ConfigError("repositories: expected a table ([repositories.<name>])")

        targets: list[TargetSpec] = []
        for index, raw in enumerate(records):
            targets.append(cls._parse_target(raw, f"targets[{index}]"))

        for name, branches in repositories.items():
            if not isinstance(branches, dict):
                raise ConfigError(f"repositories.{name}: expected branch table")
            local = root / name
            for branch, executables in branches.items():
                where = f"repositories.{name}.{branch}"
                targets.append(
                    TargetSpec(
                        repository=str(local),
                        branch=branch,
                        executables=_parse_executables(executables, where),
                        path=local,
                    )
                )

        if not targets:
            logger.warning("Config defines no targets.")

        daemon = DaemonConfig()
        if "daemon" in data:
            daemon = cls._update_dataclass("daemon", daemon, data["daemon"])

        return cls(root=root, targets=tuple(targets), daemon=daemon)

    @staticmethod
    def _parse_target(raw: Any, where: str) -> TargetSpec:
        if not isinstance(raw, dict):
            raise ConfigError(f"{where}: expected a table")

        missing = [k for k in ("repository", "branch", "executables") if k not in raw]
        if missing:
            raise ConfigError(f"{where}: missing required fields: {', '.join(missing)}")

        unknown = set(raw) - _TARGET_KEYS
        if unknown:
            logger.warning(
                f"Unknown config keys in [{where}]: {', '.join(sorted(unknown))}. "
                "Ignoring."
            )

        ssh_key = raw.get("ssh_key")
        return TargetSpec(
            repository=str(raw["repository"]),
            branch=str(raw["branch"]),
            executables=_parse_executables(raw["executables"], where),
            ssh_key=Path(ssh_key) if ssh_key else None,
        )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: Any) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing durations."""
        if not isinstance(updates, dict):
            raise ConfigError(f"[{section_name}] must be a table")

        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k in ["poll_interval", "max_backoff"]:
                    filtered_updates[k] = parse_time(v)
                elif k == "concurrent":
                    if not isinstance(v, bool):
                        raise ValueError(f"Expected true/false, got '{v}'")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

"""Tests for the configuration management subsystem."""

import logging
from pathlib import Path

import pytest

from git_rebuilder.config import (
    Config,
    DaemonConfig,
    TargetSpec,
    parse_time,
    repository_name,
)
from git_rebuilder.constants import DEFAULT_POLL_INTERVAL
from git_rebuilder.errors import ConfigError


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "rebuilder.toml"
    path.write_text(text)
    return path


def test_config_defaults() -> None:
    """Verifies that the daemon section initializes with sensible defaults."""
    conf = Config(root=Path("/srv"))
    assert conf.targets == ()
    assert conf.daemon.poll_interval == DEFAULT_POLL_INTERVAL
    assert conf.daemon.concurrent is False


def test_load_target_records(tmp_path: Path) -> None:
    """Verifies the canonical [[targets]] layout, preserving order."""
    path = _write(
        tmp_path,
        'root = "~/builds"\n'
        "[[targets]]\n"
        'repository = "git@github.com:org/service.git"\n'
        'ssh_key = "~/.ssh/id_ed25519"\n'
        'branch = "main"\n'
        'executables = ["server", "worker"]\n'
        "[[targets]]\n"
        'repository = "https://github.com/org/tools"\n'
        'branch = "release"\n'
        'executables = ["cli"]\n',
    )

    conf = Config.load(path)

    assert conf.root == Path("~/builds")
    assert [t.branch for t in conf.targets] == ["main", "release"]
    first = conf.targets[0]
    assert first.executables == frozenset({"server", "worker"})
    assert first.ssh_key == Path("~/.ssh/id_ed25519")
    assert conf.targets[1].ssh_key is None
    assert conf.local_path(first) == Path("~/builds").expanduser() / "service"


def test_load_repository_mapping(tmp_path: Path) -> None:
    """Verifies the nested repository -> branch -> executables layout."""
    path = _write(
        tmp_path,
        f'root = "{tmp_path}"\n'
        "[repositories.service]\n"
        'main = ["server", "worker"]\n'
        'release = ["server"]\n',
    )

    conf = Config.load(path)

    assert len(conf.targets) == 2
    main, release = conf.targets
    assert main.branch == "main"
    assert release.executables == frozenset({"server"})
    assert conf.local_path(main) == tmp_path / "service"
    assert main.repository == str(tmp_path / "service")


def test_duplicate_executables_rejected(tmp_path: Path) -> None:
    """Verifies that duplicate executable names fail the load."""
    path = _write(
        tmp_path,
        'root = "/srv"\n'
        "[[targets]]\n"
        'repository = "git@host:org/repo.git"\n'
        'branch = "main"\n'
        'executables = ["server", "worker", "server"]\n',
    )

    with pytest.raises(ConfigError, match="duplicate executables: server"):
        Config.load(path)


def test_duplicates_rejected_in_mapping_layout(tmp_path: Path) -> None:
    path = _write(tmp_path, 'root = "/srv"\n[repositories.a]\nmain = ["x", "x"]\n')

    with pytest.raises(ConfigError, match="repositories.a.main"):
        Config.load(path)


@pytest.mark.parametrize(
    "body, message",
    [
        ('[[targets]]\nrepository = "r"\nbranch = "main"\n', "executables"),
        ('[[targets]]\nbranch = "main"\nexecutables = []\n', "repository"),
        ('[[targets]]\nrepository = "r"\nbranch = "m"\nexecutables = "x"\n', "list"),
    ],
)
def test_invalid_targets_rejected(tmp_path: Path, body: str, message: str) -> None:
    """Verifies that missing or malformed target fields raise ConfigError."""
    path = _write(tmp_path, 'root = "/srv"\n' + body)

    with pytest.raises(ConfigError, match=message):
        Config.load(path)


def test_missing_root_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path, "[daemon]\nconcurrent = true\n")

    with pytest.raises(ConfigError, match="root"):
        Config.load(path)


@pytest.mark.parametrize(
    "body, message",
    [
        ("root = 5\n", "root: expected a directory path"),
        ('root = ""\n', "root: expected a directory path"),
        ('root = "/srv"\nrepositories = ["service"]\n', "repositories: expected a table"),
        ('root = "/srv"\ntargets = "service"\n', "targets: expected an array"),
        ('root = "/srv"\n[repositories]\nservice = "main"\n', "expected branch table"),
    ],
)
def test_malformed_sections_rejected(tmp_path: Path, body: str, message: str) -> None:
    """Verifies that wrongly typed top-level values raise ConfigError."""
    with pytest.raises(ConfigError, match=message):
        Config.load(_write(tmp_path, body))


def test_missing_file_and_bad_syntax(tmp_path: Path) -> None:
    """Verifies that unreadable config files surface as ConfigError."""
    with pytest.raises(ConfigError, match="Config not found"):
        Config.load(tmp_path / "absent.toml")

    with pytest.raises(ConfigError, match="syntax error"):
        Config.load(_write(tmp_path, "root = \n"))


def test_daemon_section_parses_durations(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        'root = "/srv"\n'
        "[daemon]\n"
        'poll_interval = "2m"\n'
        "max_backoff = 900\n"
        "concurrent = true\n",
    )

    conf = Config.load(path)

    assert conf.daemon == DaemonConfig(poll_interval=120, max_backoff=900, concurrent=True)


def test_daemon_invalid_keys_and_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fall back to defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    caplog.set_level(logging.WARNING)
    path = _write(
        tmp_path,
        'root = "/srv"\n'
        "[daemon]\n"
        'poll_interval = "fast"\n'
        'concurrent = "yes"\n'
        'fake_setting = "ignored"\n',
    )

    conf = Config.load(path)

    assert conf.daemon == DaemonConfig()
    assert "Unknown config keys in [daemon]: fake_setting" in caplog.text
    assert "Config error in [daemon].poll_interval: Invalid time format" in caplog.text
    assert "Config error in [daemon].concurrent" in caplog.text


def test_parse_time() -> None:
    """Verifies that human-readable times are correctly converted to seconds."""
    assert parse_time(50) == 50
    assert parse_time("30s") == 30
    assert parse_time("10 min") == 600
    assert parse_time("2 hrs") == 7200
    assert parse_time("1.5h") == 5400

    with pytest.raises(ValueError, match=r"Invalid time format '10 lightyears'"):
        parse_time("10 lightyears")


@pytest.mark.parametrize(
    "url",
    [
        "git@github.com:org/repo.git",
        "git@github.com:repo.git",
        "https://github.com/org/repo",
        "https://github.com/org/repo.git",
        "ssh://git@host:2222/org/repo.git/",
        "/srv/git/repo.git",
        "repo",
    ],
)
def test_repository_name_normalization(url: str) -> None:
    """Verifies the canonical repository name across URL forms."""
    assert repository_name(url) == "repo"


@pytest.mark.parametrize("url", ["", ".git", "git@host:", "https://host/.git"])
def test_repository_name_rejects_unusable_urls(url: str) -> None:
    with pytest.raises(ConfigError):
        repository_name(url)


def test_explicit_path_overrides_root() -> None:
    conf = Config(root=Path("/srv"))
    spec = TargetSpec("git@h:o/r.git", "main", None, path=Path("/opt/r"))
    assert conf.local_path(spec) == Path("/opt/r")

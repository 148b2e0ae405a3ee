"""Shared fixtures: throwaway git repositories and a fake build tool."""

import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

GIT = shutil.which("git")

# Emits one executable per name listed in bins.txt, plus noise the artifact
# filter must ignore. A FAIL file in the repository makes the build fail.
FAKE_CARGO = """#!/bin/sh
[ "$1" = "build" ] && [ "$2" = "--release" ] || exit 2
if [ -f FAIL ]; then
    echo "error[E0425]: cannot find value" >&2
    exit 101
fi
mkdir -p target/release/deps
for name in $(cat bins.txt 2>/dev/null); do
    printf '#!/bin/sh\\necho %s\\n' "$name" > "target/release/$name"
    chmod 755 "target/release/$name"
done
printf 'x' > target/release/libcore.so
chmod 755 target/release/libcore.so
printf 'x' > target/release/.fingerprint
exit 0
"""


@pytest.fixture
def git_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Gives git an identity and allows local-path submodules."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_COUNT", "1")
    monkeypatch.setenv("GIT_CONFIG_KEY_0", "protocol.file.allow")
    monkeypatch.setenv("GIT_CONFIG_VALUE_0", "always")


@pytest.fixture
def git() -> Callable[..., str]:
    """Runs a git command in a directory and returns its stripped stdout."""

    def _git(cwd: Path, *args: str) -> str:
        assert GIT is not None
        res = subprocess.run(
            [GIT, *args], cwd=cwd, capture_output=True, text=True, check=True
        )
        return res.stdout.strip()

    return _git


@pytest.fixture
def commit(git: Callable[..., str]) -> Callable[..., str]:
    """Writes files into a repository, commits them and returns the new hash."""

    def _commit(repo: Path, files: dict[str, str], message: str = "change") -> str:
        for name, content in files.items():
            target = repo / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        git(repo, "add", "-A")
        git(repo, "commit", "-q", "-m", message)
        return git(repo, "rev-parse", "HEAD")

    return _commit


@pytest.fixture
def make_upstream(
    tmp_path: Path, git_env: None, git: Callable[..., str], commit: Callable[..., str]
) -> Callable[..., Path]:
    """Creates a repository on branch 'main' with one initial commit."""

    def _make(name: str = "upstream", files: dict[str, str] | None = None) -> Path:
        repo = tmp_path / name
        repo.mkdir()
        git(repo, "init", "-q", "-b", "main")
        commit(repo, files or {"README": f"{name}\n"}, "init")
        return repo

    return _make


@pytest.fixture
def fake_cargo(tmp_path: Path) -> Path:
    """A stand-in for `cargo` that emits the binaries named in bins.txt."""
    tool = tmp_path / "bin" / "cargo"
    tool.parent.mkdir()
    tool.write_text(FAKE_CARGO)
    tool.chmod(0o755)
    return tool

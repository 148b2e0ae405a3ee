import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME, GIT_BIN, HASH_LEN
from .errors import FetchError, GitError, ResetError
from .system import child_env, run_process

logger = logging.getLogger(APP_NAME)


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Provisioning commands (clone, submodule sync) run synchronously through
    `subprocess`, since they only happen at startup. The per-cycle commands
    (fetch, reset, rev-parse) are coroutines so the daemon loop can be
    cancelled while git is waiting on the network.

    Attributes:
        path (Path): The file system path to the work tree root.
        git_bin (str): The git executable.
        env (dict[str, str] | None): Extra environment for every git call,
            typically GIT_SSH_COMMAND carrying the target's credentials.
    """

    def __init__(
        self, path: Path, git_bin: str = GIT_BIN, env: dict[str, str] | None = None
    ):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            git_bin (str, optional): The git executable. Defaults to GIT_BIN.
            env (dict[str, str] | None, optional): Extra environment variables.

        Raises:
            ValueError: If the specified path does not contain a .git entry.
        """
        self.path = path
        self.git_bin = git_bin
        self.env = env
        # Submodule work trees carry a '.git' file rather than a directory.
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    def __repr__(self) -> str:
        return f"GitRepo({str(self.path)!r})"

    @property
    def git_dir(self) -> Path:
        """The metadata directory paired with the work tree."""
        return self.path / ".git"

    @classmethod
    def clone(
        cls,
        url: str,
        path: Path,
        git_bin: str = GIT_BIN,
        env: dict[str, str] | None = None,
    ) -> "GitRepo":
        """Clones a repository and returns a wrapper for the new work tree.

        Args:
            url (str): The repository to clone.
            path (Path): The destination directory (must not exist).
            git_bin (str, optional): The git executable. Defaults to GIT_BIN.
            env (dict[str, str] | None, optional): Extra environment variables.

        Returns:
            GitRepo: The cloned repository.

        Raises:
            GitError: If the clone fails.
        """
        args = ["clone", "--", url, str(path)]
        try:
            subprocess.run(
                [git_bin, *args],
                capture_output=True,
                text=True,
                check=True,
                env=child_env(env),
            )
        except subprocess.CalledProcessError as e:
            raise GitError(args, e.returncode, e.stderr or "") from e
        except OSError as e:
            raise GitError(args, None, str(e)) from e
        return cls(path, git_bin=git_bin, env=env)

    def _run(self, args: list[str], capture: bool = True) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        try:
            res = subprocess.run(
                [self.git_bin, *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=True,
                env=child_env(self.env),
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            raise GitError(args, e.returncode, e.stderr or "") from e
        except OSError as e:
            raise GitError(args, None, str(e)) from e

    async def _run_async(
        self, args: list[str], error: type[GitError] = GitError
    ) -> str:
        """Runs a git command against the explicit git-dir / work-tree pair.

        Args:
            args (list[str]): Arguments following the git-dir/work-tree flags.
            error (type[GitError], optional): Exception raised on failure.

        Returns:
            str: The stripped stdout.

        Raises:
            GitError: (or the given subclass) on a nonzero exit.
        """
        argv = [
            self.git_bin,
            "--git-dir",
            str(self.git_dir),
            "--work-tree",
            str(self.path),
            *args,
        ]
        try:
            result = await run_process(argv, cwd=self.path, env=child_env(self.env))
        except OSError as e:
            raise error(args, None, str(e)) from e
        if not result.ok:
            raise error(args, result.returncode, result.stderr)
        return result.stdout.strip()

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The name of the current branch (empty when detached).
        """
        return self._run(["branch", "--show-current"])

    def update_submodules(self) -> None:
        """Initializes and checks out this repository's direct submodules.

        Nested submodules are left to the caller, which walks them with an
        explicit worklist.
        """
        self._run(["submodule", "update", "--init"], capture=False)

    def submodule_paths(self) -> list[Path]:
        """Lists the work tree paths of the submodules declared in .gitmodules.

        Returns:
            list[Path]: Absolute paths, in declaration order.
        """
        if not (self.path / ".gitmodules").exists():
            return []
        try:
            output = self._run(
                ["config", "--file", ".gitmodules", "--get-regexp", r"\.path$"]
            )
        except GitError as e:
            # `git config` exits 1 when no key matches.
            if e.returncode == 1:
                return []
            raise

        paths = []
        for line in output.splitlines():
            _, _, rel = line.partition(" ")
            if rel.strip():
                paths.append(self.path / rel.strip())
        return paths

    async def fetch(self) -> None:
        """Updates the remote-tracking refs.

        Raises:
            FetchError: On network or authentication failures.
        """
        await self._run_async(["fetch"], error=FetchError)

    async def reset_hard(self, branch: str) -> None:
        """Forces the work tree and index onto 'origin/<branch>'.

        Args:
            branch (str): The tracked branch.

        Raises:
            ResetError: If git refuses (missing branch, corrupted repository).
        """
        await self._run_async(["reset", "--hard", f"origin/{branch}"], error=ResetError)

    async def head_hash(self) -> bytes:
        """Returns the raw 20-byte hash of the checked-out commit.

        Raises:
            GitError: If HEAD cannot be resolved.
        """
        args = ["rev-parse", "--verify", "HEAD"]
        output = await self._run_async(args)
        try:
            raw = bytes.fromhex(output)
        except ValueError as e:
            raise GitError(args, 0, f"unexpected output {output!r}") from e
        if len(raw) != HASH_LEN:
            raise GitError(args, 0, f"unexpected hash length {output!r}")
        return raw

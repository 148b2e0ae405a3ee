"""Git Rebuilder exception hierarchy.

Every error raised by the package inherits from RebuilderError. The
``retryable`` flag tells the monitor whether a failure should be logged and
retried on the next pass, or whether the target needs operator attention.
"""


class RebuilderError(Exception):
    """Base exception for all Git Rebuilder errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConfigError(RebuilderError):
    """Invalid or missing configuration."""


class ProvisionError(RebuilderError):
    """A repository could not be opened, cloned or have its submodules synced."""


class GitError(RebuilderError):
    """A git subprocess exited with a nonzero status."""

    def __init__(
        self,
        args: list[str],
        returncode: int | None,
        stderr: str = "",
        *,
        retryable: bool = False,
    ) -> None:
        command = " ".join(args)
        super().__init__(
            f"`git {command}` failed (exit {returncode}): {stderr.strip()}",
            retryable=retryable,
        )
        self.git_args = args
        self.returncode = returncode
        self.stderr = stderr


class FetchError(GitError):
    """Updating remote-tracking refs failed (network or auth)."""

    def __init__(self, args: list[str], returncode: int | None, stderr: str = ""):
        super().__init__(args, returncode, stderr, retryable=True)


class ResetError(GitError):
    """Forcing the work tree onto the remote branch failed."""

    def __init__(self, args: list[str], returncode: int | None, stderr: str = ""):
        # Usually corruption or a missing branch; still recoverable per target.
        super().__init__(args, returncode, stderr, retryable=True)


class BuildError(RebuilderError):
    """The build tool failed or could not be started."""

    def __init__(self, message: str = "", stderr: str = "") -> None:
        super().__init__(message, retryable=True)
        self.stderr = stderr


class UploadError(RebuilderError):
    """A single binary could not be published."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message, retryable=True)

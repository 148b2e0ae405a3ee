import argparse
import logging
import sys
from pathlib import Path

import shtab
from dotenv import find_dotenv, load_dotenv
from rich.console import Console

from . import daemon
from .config import Config, TargetSpec
from .constants import APP_NAME, DEFAULT_CARGO_PATH, DEFAULT_ENDPOINT
from .errors import ConfigError, GitError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)
err_console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    """Creates the argument parser for the daemon."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description=(
            "Watch git branches, rebuild on new commits and upload the "
            "resulting binaries."
        ),
    )
    parser.add_argument(
        "repos",
        nargs="*",
        type=Path,
        metavar="REPO",
        help="Local repositories to monitor on their current branch "
        "(instead of --config)",
    ).complete = shtab.DIRECTORY
    parser.add_argument(
        "--config", type=Path, help="Path to the git-rebuilder TOML config file"
    ).complete = shtab.FILE
    parser.add_argument(
        "--bin-serve-endpoint",
        default=DEFAULT_ENDPOINT,
        metavar="URL",
        help=f"Bin serve instance to upload binaries to (default: {DEFAULT_ENDPOINT})",
    )
    parser.add_argument(
        "--cargo-path",
        type=Path,
        default=DEFAULT_CARGO_PATH,
        help=f"Path to cargo executable (default: {DEFAULT_CARGO_PATH})",
    ).complete = shtab.FILE
    parser.add_argument(
        "--logs", type=Path, help="Directory to write log files to"
    ).complete = shtab.DIRECTORY
    parser.add_argument(
        "--completions",
        choices=shtab.SUPPORTED_SHELLS,
        metavar="SHELL",
        help="Generate completions for the provided shell and exit",
    )
    parser.add_argument(
        "--once", action="store_true", help="Run a single pass over all targets"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    return parser


def config_from_repos(paths: list[Path]) -> Config:
    """Builds a config that tracks each repository's checked-out branch.

    Every candidate binary is published, since no executable list exists.

    Args:
        paths (list[Path]): Local work trees.

    Returns:
        Config: A config rooted at the current directory.

    Raises:
        ConfigError: If a path is not a repository or has a detached HEAD.
    """
    targets = []
    for raw in paths:
        path = raw.expanduser().resolve()
        try:
            repo = GitRepo(path)
            branch = repo.current_branch()
        except (ValueError, GitError) as e:
            raise ConfigError(f"{raw}: {e}") from e
        if not branch:
            raise ConfigError(f"{raw}: HEAD is detached, cannot infer the branch")
        targets.append(
            TargetSpec(repository=str(path), branch=branch, executables=None, path=path)
        )
    return Config(root=Path.cwd(), targets=tuple(targets))


def load_env() -> None:
    """Loads a .env file from the working directory, if present."""
    env_file = find_dotenv(usecwd=True)
    if env_file:
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from {env_file}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the git-rebuilder CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # If the user is requesting completions, print them and exit.
    if args.completions:
        sys.stdout.write(shtab.complete(parser, shell=args.completions))
        return

    if args.config is None and not args.repos:
        parser.error("either --config or at least one REPO is required")
    if args.config is not None and args.repos:
        parser.error("--config and REPO arguments are mutually exclusive")

    if not args.cargo_path.exists():
        err_console.print(
            f"[bold red]ERROR:[/bold red] Cargo path does not exist: {args.cargo_path}"
        )
        sys.exit(1)

    daemon.setup_logging(args.logs, args.verbose)
    load_env()

    try:
        if args.config is not None:
            config = Config.load(args.config)
        else:
            config = config_from_repos(args.repos)
    except ConfigError as e:
        err_console.print(f"[bold red]Config Error:[/bold red] {e}")
        sys.exit(1)

    code = daemon.main(
        config,
        build_tool=args.cargo_path,
        endpoint=args.bin_serve_endpoint,
        once=args.once,
    )
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()

"""Git Rebuilder: continuous build-and-publish daemon for git branches.

This package provides the command-line interface, the monitoring daemon, and
the build and upload pipeline that turns new commits on tracked branches into
freshly published binaries.
"""

from . import (
    artifacts,
    builder,
    cli,
    config,
    constants,
    daemon,
    errors,
    git_wrapper,
    monitor,
    provision,
    system,
    uploader,
)

__all__ = [
    "artifacts",
    "builder",
    "cli",
    "config",
    "constants",
    "daemon",
    "errors",
    "git_wrapper",
    "monitor",
    "provision",
    "system",
    "uploader",
]

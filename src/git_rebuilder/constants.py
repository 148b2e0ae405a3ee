from pathlib import Path

"""Global constants and default values for Git Rebuilder.

This module defines application identifiers, the default external tool
locations, and the build output layout used across the application.
"""

# --- Identity ---
APP_NAME = "git-rebuilder"
"""str: The human-readable application name, also used as the logger name."""

# --- Logging ---
LOG_FILE_NAME = "daemon.log"
"""str: The file name of the daemon log inside the log directory."""

# --- External Tools ---
GIT_BIN = "git"
"""str: The git executable (resolved through PATH) used for fetch, reset and
provisioning."""

DEFAULT_CARGO_PATH = Path("/usr/local/bin/cargo")
"""Path: The default build tool executable."""

DEFAULT_ENDPOINT = "http://localhost:8080"
"""str: The default bin serve instance that receives uploaded binaries."""

DEFAULT_SSH_USER = "git"
"""str: The SSH user used when the repository URL does not embed one."""

# --- Build Layout ---
ARTIFACT_SUBDIR = Path("target") / "release"
"""Path: The build output directory, relative to the repository root."""

UPLOAD_FIELD = "path"
"""str: The multipart field name expected by the upload endpoint."""

EXEC_BITS = 0o111
"""int: Permission mask matching any execute bit (owner, group or other)."""

HASH_LEN = 20
"""int: Length in bytes of a raw SHA-1 commit hash."""

# --- Daemon Defaults ---
DEFAULT_POLL_INTERVAL = 30
"""int: Seconds between two passes over the target list."""

DEFAULT_MAX_BACKOFF = 600
"""int: Upper bound in seconds for the delay applied to a failing target."""

MAX_LOG_SIZE = 5 * 1024 * 1024
"""int: Max bytes for the log file before rotation."""

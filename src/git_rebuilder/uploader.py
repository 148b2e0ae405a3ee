import logging
from collections.abc import Collection
from pathlib import Path

import httpx

from .artifacts import scan_artifacts
from .constants import APP_NAME, UPLOAD_FIELD
from .errors import UploadError

logger = logging.getLogger(APP_NAME)


def upload_name(binary: str, commit_hash: bytes) -> str:
    """Builds the published file name, '<binary>-<40 hex chars>'."""
    return f"{binary}-{commit_hash.hex()}"


def upload_url(endpoint: str) -> str:
    """Builds the upload URL for a bin serve endpoint."""
    return f"{endpoint.rstrip('/')}/upload?path=/"


async def upload_binary(
    path: Path, file_name: str, endpoint: str, client: httpx.AsyncClient
) -> None:
    """Streams one file to the endpoint as a single multipart part.

    Args:
        path (Path): The binary on disk.
        file_name (str): The name the endpoint stores it under.
        endpoint (str): The bin serve base URL.
        client (httpx.AsyncClient): The shared HTTP client.

    Raises:
        UploadError: On a non-200 response, a transport error, or if the
            file cannot be read.
    """
    try:
        with open(path, "rb") as f:
            files = {UPLOAD_FIELD: (file_name, f, "application/octet-stream")}
            response = await client.post(upload_url(endpoint), files=files)
    except httpx.HTTPError as e:
        raise UploadError(f"Request failed: {e}") from e
    except OSError as e:
        raise UploadError(f"Could not read {path}: {e}") from e

    if response.status_code != 200:
        raise UploadError(
            f"Endpoint answered {response.status_code} {response.reason_phrase}"
        )


async def upload_binaries(
    artifact_dir: Path,
    executables: Collection[str] | None,
    commit_hash: bytes,
    endpoint: str,
    client: httpx.AsyncClient,
) -> dict[str, bool]:
    """Publishes the configured binaries found in a build directory.

    A failed upload is logged and does not stop the remaining binaries.

    Args:
        artifact_dir (Path): The build output directory.
        executables (Collection[str] | None): Names to publish; None publishes
            every candidate binary.
        commit_hash (bytes): The raw hash of the built commit.
        endpoint (str): The bin serve base URL.
        client (httpx.AsyncClient): The shared HTTP client.

    Returns:
        dict[str, bool]: Upload success per binary name, in upload order.

    Raises:
        UploadError: If the artifact directory cannot be read at all.
    """
    try:
        binaries = scan_artifacts(artifact_dir)
    except OSError as e:
        raise UploadError(f"Failed to read artifact directory {artifact_dir}: {e}") from e

    outcomes: dict[str, bool] = {}
    commit = commit_hash.hex()
    for binary in binaries:
        if executables is not None and binary.name not in executables:
            continue

        file_name = upload_name(binary.name, commit_hash)
        logger.info(f"UPLOADING {binary.name} @ {commit}: {file_name}")
        try:
            await upload_binary(binary, file_name, endpoint, client)
        except UploadError as e:
            logger.warning(f"UPLOAD FAILED {binary.name} @ {commit}: {e}")
            outcomes[binary.name] = False
            continue

        logger.info(f"UPLOADED {binary.name} @ {commit}: {file_name}")
        outcomes[binary.name] = True

    if executables is not None:
        missing = sorted(set(executables) - set(outcomes))
        if missing:
            logger.warning(
                f"MISSING {artifact_dir}: build produced no {', '.join(missing)}"
            )

    return outcomes

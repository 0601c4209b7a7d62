"""
frontend_deploy.artifacts — Scan a build output directory into an ArtifactSet.

Cache-Control policy:
    *.html / *.htm      no-cache (entry points must always revalidate)
    assets/**           public, max-age=31536000, immutable (fingerprinted bundles)
    everything else     public, max-age=86400

Implemented in TASK-040.
"""

from __future__ import annotations

import hashlib
import mimetypes
from collections.abc import Iterable
from fnmatch import fnmatch
from pathlib import Path

from frontend_deploy.exceptions import ConfigError
from frontend_deploy.models import (
    DEFAULT_CACHE_CONTROL,
    DEFAULT_CONTENT_TYPE,
    HTML_CACHE_CONTROL,
    IMMUTABLE_CACHE_CONTROL,
    ArtifactFile,
    ArtifactSet,
)

_CHUNK_SIZE = 1024 * 1024
_IMMUTABLE_DIRS = ("assets/",)

# mimetypes reads the host's /etc/mime.types; pin the ones SPAs depend on.
mimetypes.add_type("application/javascript", ".js")
mimetypes.add_type("application/javascript", ".mjs")
mimetypes.add_type("text/css", ".css")
mimetypes.add_type("image/svg+xml", ".svg")
mimetypes.add_type("application/wasm", ".wasm")
mimetypes.add_type("application/manifest+json", ".webmanifest")


def normalise_prefix(prefix: str) -> str:
    """Return prefix with no leading slash and exactly one trailing slash ("" stays "")."""
    stripped = prefix.strip().strip("/")
    return f"{stripped}/" if stripped else ""


def compute_md5(path: Path) -> str:
    """Hex MD5 of a file, read in chunks."""
    digest = hashlib.md5(usedforsecurity=False)
    with path.open("rb") as fh:
        while chunk := fh.read(_CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def guess_content_type(key: str) -> str:
    content_type, _ = mimetypes.guess_type(key)
    return content_type or DEFAULT_CONTENT_TYPE


def cache_control_for(relative_key: str) -> str:
    if relative_key.endswith((".html", ".htm")):
        return HTML_CACHE_CONTROL
    if relative_key.startswith(_IMMUTABLE_DIRS):
        return IMMUTABLE_CACHE_CONTROL
    return DEFAULT_CACHE_CONTROL


def is_excluded(relative_key: str, patterns: Iterable[str]) -> bool:
    """True when the key (relative to the prefix) matches any glob pattern."""
    return any(fnmatch(relative_key, pattern) for pattern in patterns)


def scan_artifacts(
    artifact_dir: Path | str,
    *,
    key_prefix: str = "",
    exclude: Iterable[str] = (),
) -> ArtifactSet:
    """Walk artifact_dir and return every regular file as an ArtifactFile.

    Raises ConfigError if the directory is missing, not a directory, or
    holds no files after exclusions.
    """
    root = Path(artifact_dir)
    if not root.exists():
        raise ConfigError(f"Artifact directory does not exist: {root}")
    if not root.is_dir():
        raise ConfigError(f"Artifact path is not a directory: {root}")

    prefix = normalise_prefix(key_prefix)
    patterns = tuple(exclude)
    files: list[ArtifactFile] = []
    for path in root.rglob("*"):
        if not path.is_file():
            continue
        relative_key = path.relative_to(root).as_posix()
        if is_excluded(relative_key, patterns):
            continue
        files.append(
            ArtifactFile(
                key=f"{prefix}{relative_key}",
                path=path,
                md5=compute_md5(path),
                size=path.stat().st_size,
                content_type=guess_content_type(relative_key),
                cache_control=cache_control_for(relative_key),
            )
        )

    if not files:
        raise ConfigError(f"Artifact directory is empty: {root}")

    files.sort(key=lambda f: f.key)
    return ArtifactSet(root=root, files=tuple(files), key_prefix=prefix)

"""
frontend_deploy.models — Value types for the deploy pipeline.

Types defined here:
    ArtifactFile / ArtifactSet — local build output, immutable once scanned
    RemoteObject               — one entry of the bucket listing
    SyncPlan                   — diff between artifact set and bucket listing
    InvalidationResult         — CloudFront invalidation handle
    DeploySummary              — what a deploy did

Implemented in TASK-040.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
INVALIDATE_ALL_PATHS: tuple[str, ...] = ("/*",)
DELETE_BATCH_SIZE: int = 1000  # S3 DeleteObjects hard limit per request
DEPLOY_LOCK_TTL_SECONDS: int = 15 * 60  # 15 minutes

HTML_CACHE_CONTROL = "no-cache"
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
DEFAULT_CACHE_CONTROL = "public, max-age=86400"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DeployStep(StrEnum):
    VALIDATE = "validate"
    BUILD = "build"
    LOCK = "lock"
    SYNC = "sync"
    INVALIDATE = "invalidate"


class InvalidationStatus(StrEnum):
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    SKIPPED = "Skipped"  # dry run


# ---------------------------------------------------------------------------
# Local artifacts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtifactFile:
    """A single file of the build output.

    key: S3 object key (POSIX separators, key prefix already applied).
    md5: hex digest of the file body, compared against the remote ETag.
    """

    key: str
    path: Path
    md5: str
    size: int
    content_type: str
    cache_control: str

    @property
    def is_html(self) -> bool:
        return self.key.endswith((".html", ".htm"))


@dataclass(frozen=True)
class ArtifactSet:
    """Build output ordered by key."""

    root: Path
    files: tuple[ArtifactFile, ...]
    key_prefix: str = ""

    def __post_init__(self) -> None:
        keys = [f.key for f in self.files]
        if keys != sorted(keys):
            raise ValueError("ArtifactSet files must be ordered by key")
        if len(set(keys)) != len(keys):
            raise ValueError("ArtifactSet keys must be unique")

    def __iter__(self) -> Iterator[ArtifactFile]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    def by_key(self) -> dict[str, ArtifactFile]:
        return {f.key: f for f in self.files}

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)


# ---------------------------------------------------------------------------
# Remote state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemoteObject:
    """One object in the bucket listing.

    etag is stored without the surrounding quotes S3 returns.  For single-part
    uploads it equals the hex MD5 of the body; multipart ETags contain a "-"
    and never match a local MD5, so such objects are always re-uploaded.
    """

    key: str
    etag: str
    size: int


@dataclass(frozen=True)
class SyncPlan:
    """Mirror-sync diff.  uploads are ordered non-HTML first, then HTML."""

    uploads: tuple[ArtifactFile, ...]
    deletions: tuple[str, ...]
    unchanged: tuple[str, ...] = ()

    @property
    def is_noop(self) -> bool:
        return not self.uploads and not self.deletions


@dataclass(frozen=True)
class InvalidationResult:
    invalidation_id: str
    status: str
    paths: tuple[str, ...]
    caller_reference: str


@dataclass(frozen=True)
class DeploySummary:
    """Result of one deploy.  Counts reflect the plan when dry_run is set."""

    bucket: str
    distribution_id: str
    uploaded: int
    deleted: int
    unchanged: int
    invalidation_id: str | None
    dry_run: bool = False
    duration_seconds: float = 0.0
    uploaded_keys: tuple[str, ...] = field(default=(), repr=False)
    deleted_keys: tuple[str, ...] = field(default=(), repr=False)

    def as_log_line(self) -> str:
        prefix = "DEPLOY_DRY_RUN" if self.dry_run else "DEPLOY_OK"
        return (
            f"{prefix} bucket={self.bucket} distribution={self.distribution_id} "
            f"uploaded={self.uploaded} deleted={self.deleted} unchanged={self.unchanged} "
            f"invalidation={self.invalidation_id or 'none'}"
        )

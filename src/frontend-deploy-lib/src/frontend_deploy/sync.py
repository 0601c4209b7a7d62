"""
frontend_deploy.sync — Mirror-sync planning and execution.

plan_sync is a pure diff:
    upload   local key missing remotely, or remote ETag != local MD5
    delete   remote key (under the prefix) with no local counterpart,
             unless it matches an exclude pattern
    skip     everything else

apply_plan uploads non-HTML assets first, then HTML entry points, then
deletes.  A failed operation aborts the run; completed uploads/deletes are
not rolled back.  Transient TransferErrors are retried with bounded
exponential backoff.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TypeVar

from aws_lambda_powertools import Logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from frontend_deploy.artifacts import is_excluded
from frontend_deploy.exceptions import TransferError
from frontend_deploy.models import ArtifactFile, ArtifactSet, RemoteObject, SyncPlan
from frontend_deploy.ports import ObjectStore

logger = Logger(service="frontend-deploy")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient transfer errors only."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 20.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass
class SyncOutcome:
    uploaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransferError) and exc.transient


def call_with_retry(policy: RetryPolicy, operation: Callable[[], T], *, what: str) -> T:
    """Run operation, retrying transient TransferErrors with bounded exponential backoff."""
    def _log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "Transient transfer error, retrying",
            operation=what,
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else "",
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay_seconds,
            max=policy.max_delay_seconds,
        ),
        retry=retry_if_exception(_is_transient),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(operation)


def plan_sync(
    artifacts: ArtifactSet,
    remote: Mapping[str, RemoteObject],
    *,
    exclude: Iterable[str] = (),
) -> SyncPlan:
    patterns = tuple(exclude)
    local = artifacts.by_key()

    changed: list[ArtifactFile] = []
    unchanged: list[str] = []
    for artifact in artifacts:
        existing = remote.get(artifact.key)
        if existing is not None and existing.etag == artifact.md5:
            unchanged.append(artifact.key)
        else:
            changed.append(artifact)

    prefix = artifacts.key_prefix
    deletions = sorted(
        key
        for key in remote
        if key.startswith(prefix)
        and key not in local
        and not is_excluded(key[len(prefix) :], patterns)
    )

    # Stable partition: assets first so new HTML never points at missing files.
    ordered = [a for a in changed if not a.is_html] + [a for a in changed if a.is_html]
    return SyncPlan(uploads=tuple(ordered), deletions=tuple(deletions), unchanged=tuple(unchanged))


def apply_plan(
    store: ObjectStore,
    plan: SyncPlan,
    *,
    retry_policy: RetryPolicy | None = None,
) -> SyncOutcome:
    policy = retry_policy or RetryPolicy()
    outcome = SyncOutcome()

    for artifact in plan.uploads:
        call_with_retry(policy, lambda a=artifact: store.upload(a), what=f"upload {artifact.key}")
        outcome.uploaded.append(artifact.key)
        logger.debug("Uploaded", bucket=store.bucket, key=artifact.key, size=artifact.size)

    if plan.deletions:
        deleted = call_with_retry(
            policy, lambda: store.delete(plan.deletions), what="delete stale objects"
        )
        outcome.deleted.extend(deleted)
        logger.info("Deleted stale objects", bucket=store.bucket, count=len(deleted))

    return outcome

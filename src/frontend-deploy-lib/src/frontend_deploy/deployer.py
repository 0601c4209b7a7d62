"""
frontend_deploy.deployer — Build, mirror-sync and invalidate.

Pipeline (strictly sequential, stops at the first failing step):
    1. build       (run_pipeline only) external command, exit code decides
    2. validate    artifact directory exists and is non-empty
    3. lock        single-flight lock on the bucket
    4. sync        upload new/changed, delete stale; no rollback
    5. invalidate  one CloudFront invalidation for /*; sync is not undone
    6. wait        (optional) runs after the lock is released

Implemented in TASK-040.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

from aws_lambda_powertools import Logger

from frontend_deploy.artifacts import scan_artifacts
from frontend_deploy.build import run_build
from frontend_deploy.cdn import new_caller_reference
from frontend_deploy.exceptions import ConfigError, DeployError
from frontend_deploy.lock import DeployLock, default_owner, process_lock
from frontend_deploy.models import INVALIDATE_ALL_PATHS, DeployStep, DeploySummary
from frontend_deploy.ports import CdnInvalidator, ObjectStore
from frontend_deploy.sync import RetryPolicy, apply_plan, call_with_retry, plan_sync

logger = Logger(service="frontend-deploy")


class Deployer:
    """
    Deploys a static artifact directory to one bucket + distribution.

    The object store and invalidator are injected, so the same pipeline
    runs against S3/CloudFront or the in-memory fakes.
    """

    def __init__(
        self,
        *,
        store: ObjectStore,
        invalidator: CdnInvalidator,
        lock: DeployLock | None = None,
        retry_policy: RetryPolicy | None = None,
        owner: str | None = None,
    ) -> None:
        self._store = store
        self._invalidator = invalidator
        self._lock: DeployLock = lock or process_lock()
        self._retry_policy = retry_policy or RetryPolicy()
        self._owner = owner or default_owner()

    def deploy(
        self,
        artifact_dir: Path | str,
        bucket: str,
        distribution_id: str,
        *,
        key_prefix: str = "",
        exclude: Iterable[str] = (),
        invalidation_paths: Sequence[str] = INVALIDATE_ALL_PATHS,
        dry_run: bool = False,
        wait: bool = False,
    ) -> DeploySummary:
        """Mirror artifact_dir onto bucket, then invalidate distribution_id.

        Raises a DeployError subclass identifying the failed step.
        """
        started = time.monotonic()
        if not bucket or not bucket.strip():
            raise ConfigError("Bucket name is empty")
        if not distribution_id or not distribution_id.strip():
            raise ConfigError("Distribution id is empty")
        if bucket != self._store.bucket:
            raise ConfigError(
                f"Object store is bound to bucket {self._store.bucket!r}, not {bucket!r}"
            )
        patterns = tuple(exclude)

        artifacts = scan_artifacts(artifact_dir, key_prefix=key_prefix, exclude=patterns)
        logger.info(
            "Artifact set scanned",
            step=DeployStep.VALIDATE,
            artifact_dir=str(artifact_dir),
            files=len(artifacts),
            bytes=artifacts.total_bytes,
        )

        with self._lock.held(bucket, acquired_by=self._owner):
            remote = call_with_retry(
                self._retry_policy,
                lambda: self._store.list_objects(artifacts.key_prefix),
                what=f"list {bucket}",
            )
            plan = plan_sync(artifacts, remote, exclude=patterns)
            logger.info(
                "Sync plan computed",
                step=DeployStep.SYNC,
                bucket=bucket,
                uploads=len(plan.uploads),
                deletions=len(plan.deletions),
                unchanged=len(plan.unchanged),
                dry_run=dry_run,
            )

            if dry_run:
                for artifact in plan.uploads:
                    logger.info("Would upload", key=artifact.key, size=artifact.size)
                for key in plan.deletions:
                    logger.info("Would delete", key=key)
                return DeploySummary(
                    bucket=bucket,
                    distribution_id=distribution_id,
                    uploaded=len(plan.uploads),
                    deleted=len(plan.deletions),
                    unchanged=len(plan.unchanged),
                    invalidation_id=None,
                    dry_run=True,
                    duration_seconds=time.monotonic() - started,
                    uploaded_keys=tuple(a.key for a in plan.uploads),
                    deleted_keys=plan.deletions,
                )

            outcome = apply_plan(self._store, plan, retry_policy=self._retry_policy)

            invalidation = self._invalidator.create_invalidation(
                distribution_id,
                invalidation_paths,
                caller_reference=new_caller_reference(bucket),
            )
            logger.info(
                "Invalidation submitted",
                step=DeployStep.INVALIDATE,
                distribution_id=distribution_id,
                invalidation_id=invalidation.invalidation_id,
                paths=list(invalidation.paths),
            )

        if wait:
            self._invalidator.wait_for_invalidation(distribution_id, invalidation.invalidation_id)

        summary = DeploySummary(
            bucket=bucket,
            distribution_id=distribution_id,
            uploaded=len(outcome.uploaded),
            deleted=len(outcome.deleted),
            unchanged=len(plan.unchanged),
            invalidation_id=invalidation.invalidation_id,
            duration_seconds=time.monotonic() - started,
            uploaded_keys=tuple(outcome.uploaded),
            deleted_keys=tuple(outcome.deleted),
        )
        logger.info(
            "Deploy complete",
            bucket=bucket,
            uploaded=summary.uploaded,
            deleted=summary.deleted,
            invalidation_id=summary.invalidation_id,
        )
        return summary

    def run_pipeline(
        self,
        artifact_dir: Path | str,
        bucket: str,
        distribution_id: str,
        *,
        build_command: str | Sequence[str] | None,
        build_cwd: Path | str | None = None,
        build_env: Mapping[str, str] | None = None,
        key_prefix: str = "",
        exclude: Iterable[str] = (),
        invalidation_paths: Sequence[str] = INVALIDATE_ALL_PATHS,
        dry_run: bool = False,
        wait: bool = False,
    ) -> DeploySummary:
        """Run the build command (if any), then deploy.

        A failed build raises BuildError before anything touches the bucket.
        """
        try:
            if build_command:
                run_build(build_command, cwd=build_cwd, env=build_env)
            return self.deploy(
                artifact_dir,
                bucket,
                distribution_id,
                key_prefix=key_prefix,
                exclude=exclude,
                invalidation_paths=invalidation_paths,
                dry_run=dry_run,
                wait=wait,
            )
        except DeployError as exc:
            logger.error("Deploy failed", step=exc.step, error=str(exc))
            raise

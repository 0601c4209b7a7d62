"""
frontend_deploy.exceptions — Deploy pipeline error taxonomy.

Every error carries the pipeline step it failed on and the process exit
code the CLI returns for it.  Any DeployError aborts the remaining steps;
nothing is rolled back.

Implemented in TASK-040.
"""

from __future__ import annotations

from frontend_deploy.models import DeployStep


class DeployError(RuntimeError):
    """Base class for deploy pipeline failures."""

    step: DeployStep = DeployStep.VALIDATE
    exit_code: int = 1


class ConfigError(DeployError):
    """Missing or invalid local input (artifact directory, bucket, distribution, region)."""

    step = DeployStep.VALIDATE
    exit_code = 2


class BuildError(DeployError):
    """The external build command exited non-zero or could not be started."""

    step = DeployStep.BUILD
    exit_code = 3

    def __init__(self, message: str, *, return_code: int | None = None) -> None:
        super().__init__(message)
        self.return_code = return_code


class AuthError(DeployError):
    """
    AWS rejected or could not find credentials.

    Raised during sync by default; SSM lookups and the DynamoDB lock pass
    their own step so the CLI still names where it failed.
    """

    step = DeployStep.SYNC
    exit_code = 4

    def __init__(self, message: str, *, step: DeployStep | None = None) -> None:
        super().__init__(message)
        if step is not None:
            self.step = step


class TransferError(DeployError):
    """
    Upload, delete or listing against the bucket failed.

    Attributes:
        key:       Object key being transferred when the failure happened, if any.
        transient: True when the underlying failure is worth retrying
                   (throttling, 5xx, connection/read timeouts).
    """

    step = DeployStep.SYNC
    exit_code = 5

    def __init__(self, message: str, *, key: str | None = None, transient: bool = False) -> None:
        super().__init__(message)
        self.key = key
        self.transient = transient


class InvalidationError(DeployError):
    """CloudFront rejected the invalidation or the distribution does not exist."""

    step = DeployStep.INVALIDATE
    exit_code = 6

    def __init__(self, message: str, *, distribution_id: str) -> None:
        super().__init__(message)
        self.distribution_id = distribution_id


class DeployLockHeldError(DeployError):
    """Another deploy currently holds the single-flight lock for the bucket."""

    step = DeployStep.LOCK
    exit_code = 7

    def __init__(self, *, bucket: str, held_by: str | None = None) -> None:
        holder = f" by {held_by!r}" if held_by else ""
        super().__init__(f"Deploy lock for bucket {bucket!r} already held{holder}")
        self.bucket = bucket
        self.held_by = held_by


class LockBackendError(DeployError):
    """The lock table could not be read or written (throttling, 5xx, missing table)."""

    step = DeployStep.LOCK
    exit_code = 7


class LockOwnershipError(DeployError):
    """Raised when release fails due to lock ownership mismatch."""

    step = DeployStep.LOCK
    exit_code = 7

"""
frontend_deploy.lock — Single-flight deploy lock keyed on the target bucket.

Lock record (DynamoDB):
  table: configured via FRONTEND_DEPLOY_LOCK_TABLE
  PK:    LOCK#frontend-deploy#{bucket}
  SK:    METADATA
TTL:
  15 minutes (auto-expire prevents a permanent lock if a CI runner dies)

Without a table, LocalDeployLock serialises deploys inside one process only.
"""

from __future__ import annotations

import os
import socket
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from frontend_deploy.aws import error_code, is_auth_error
from frontend_deploy.exceptions import (
    AuthError,
    DeployLockHeldError,
    LockBackendError,
    LockOwnershipError,
)
from frontend_deploy.models import DEPLOY_LOCK_TTL_SECONDS, DeployStep

logger = Logger(service="frontend-deploy")

LOCK_NAME_PREFIX = "frontend-deploy#"


@dataclass(frozen=True)
class LockRecord:
    bucket: str
    lock_id: str
    acquired_by: str
    acquired_at: str
    ttl: int

    @property
    def lock_name(self) -> str:
        return f"{LOCK_NAME_PREFIX}{self.bucket}"

    @property
    def pk(self) -> str:
        return f"LOCK#{self.lock_name}"

    @property
    def sk(self) -> str:
        return "METADATA"


class DeployLock(Protocol):
    def held(self, bucket: str, *, acquired_by: str) -> Any:
        """Context manager holding the lock for bucket; raises DeployLockHeldError."""
        ...


def now_utc() -> datetime:
    return datetime.now(UTC)


def iso8601_utc(dt: datetime) -> str:
    return dt.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def default_owner() -> str:
    run_id = os.environ.get("GITHUB_RUN_ID")
    if run_id:
        return f"ci/deploy_frontend.py:run-{run_id}"
    user = os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"
    host = socket.gethostname() or "unknown-host"
    return f"ops/deploy_frontend.py:{user}@{host}"


def _lock_key(bucket: str) -> dict[str, Any]:
    return {"PK": {"S": f"LOCK#{LOCK_NAME_PREFIX}{bucket}"}, "SK": {"S": "METADATA"}}


def _lock_backend_error(
    error: ClientError | BotoCoreError, *, bucket: str, action: str
) -> AuthError | LockBackendError:
    message = f"Could not {action} deploy lock for bucket {bucket!r}: {error}"
    if is_auth_error(error):
        return AuthError(message, step=DeployStep.LOCK)
    return LockBackendError(message)


# ---------------------------------------------------------------------------
# DynamoDB-backed lock (shared across CI runners)
# ---------------------------------------------------------------------------


class DynamoDbDeployLock:
    def __init__(
        self,
        *,
        ddb_client: Any,
        table_name: str,
        ttl_seconds: int = DEPLOY_LOCK_TTL_SECONDS,
    ) -> None:
        self._ddb: Any = ddb_client
        self.table_name = table_name
        self.ttl_seconds = ttl_seconds

    def acquire(
        self, bucket: str, *, acquired_by: str, now: datetime | None = None
    ) -> LockRecord:
        current_time = now or now_utc()
        record = LockRecord(
            bucket=bucket,
            lock_id=str(uuid4()),
            acquired_by=acquired_by,
            acquired_at=iso8601_utc(current_time),
            ttl=int(current_time.timestamp()) + self.ttl_seconds,
        )
        item = {
            "PK": {"S": record.pk},
            "SK": {"S": record.sk},
            "lockName": {"S": record.lock_name},
            "lockId": {"S": record.lock_id},
            "acquiredBy": {"S": record.acquired_by},
            "acquiredAt": {"S": record.acquired_at},
            "ttl": {"N": str(record.ttl)},
        }
        # An expired-but-not-yet-reaped record (TTL deletion lags) is fair game.
        try:
            self._ddb.put_item(
                TableName=self.table_name,
                Item=item,
                ConditionExpression="attribute_not_exists(PK) OR #ttl < :now",
                ExpressionAttributeNames={"#ttl": "ttl"},
                ExpressionAttributeValues={":now": {"N": str(int(current_time.timestamp()))}},
            )
        except ClientError as exc:
            if error_code(exc) == "ConditionalCheckFailedException":
                raise DeployLockHeldError(
                    bucket=bucket, held_by=self._current_holder(bucket)
                ) from exc
            raise _lock_backend_error(exc, bucket=bucket, action="acquire") from exc
        except BotoCoreError as exc:
            raise _lock_backend_error(exc, bucket=bucket, action="acquire") from exc
        logger.info("Deploy lock acquired", bucket=bucket, lock_id=record.lock_id)
        return record

    def release(self, bucket: str, *, lock_id: str | None = None) -> bool:
        delete_kwargs: dict[str, Any] = {
            "TableName": self.table_name,
            "Key": _lock_key(bucket),
            "ReturnValues": "ALL_OLD",
        }
        if lock_id:
            delete_kwargs["ConditionExpression"] = "lockId = :lock_id"
            delete_kwargs["ExpressionAttributeValues"] = {":lock_id": {"S": lock_id}}
        try:
            response = self._ddb.delete_item(**delete_kwargs)
        except ClientError as exc:
            if error_code(exc) == "ConditionalCheckFailedException":
                raise LockOwnershipError(
                    f"Deploy lock ownership mismatch for {bucket}; refusing to release"
                ) from exc
            raise
        return "Attributes" in response

    def _current_holder(self, bucket: str) -> str | None:
        try:
            item = self._ddb.get_item(
                TableName=self.table_name, Key=_lock_key(bucket), ConsistentRead=True
            ).get("Item")
        except (ClientError, BotoCoreError):
            logger.exception("Could not read deploy lock holder", bucket=bucket)
            return None
        if not item:
            return None
        return str(item.get("acquiredBy", {}).get("S", "")) or None

    @contextmanager
    def held(self, bucket: str, *, acquired_by: str) -> Iterator[LockRecord]:
        record = self.acquire(bucket, acquired_by=acquired_by)
        try:
            yield record
        finally:
            try:
                self.release(bucket, lock_id=record.lock_id)
            except LockOwnershipError:
                # TTL expired and someone else took over; nothing to release.
                logger.warning("Deploy lock was taken over before release", bucket=bucket)
            except (ClientError, BotoCoreError) as exc:
                # The record expires via TTL.
                logger.warning(
                    "Deploy lock release failed, leaving it to expire",
                    bucket=bucket,
                    lock_id=record.lock_id,
                    ttl=record.ttl,
                    error=str(exc),
                )


# ---------------------------------------------------------------------------
# In-process lock
# ---------------------------------------------------------------------------


class LocalDeployLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._holders: dict[str, str] = {}

    def is_held(self, bucket: str) -> bool:
        with self._guard:
            return bucket in self._holders

    @contextmanager
    def held(self, bucket: str, *, acquired_by: str) -> Iterator[str]:
        with self._guard:
            holder = self._holders.get(bucket)
            if holder is not None:
                raise DeployLockHeldError(bucket=bucket, held_by=holder)
            self._holders[bucket] = acquired_by
        try:
            yield acquired_by
        finally:
            with self._guard:
                self._holders.pop(bucket, None)


_process_lock = LocalDeployLock()


def process_lock() -> LocalDeployLock:
    """Module-wide LocalDeployLock shared by every Deployer in the process."""
    return _process_lock

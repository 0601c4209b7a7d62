"""
frontend_deploy.storage — S3ObjectStore and InMemoryObjectStore.

Uploads go through put_object (single part) with Content-MD5 so the stored
ETag is always the body's hex MD5; that is what makes re-deploying an
unchanged build a no-op.  upload_file would switch to multipart above
8 MiB and produce ETags that never match.

Implemented in TASK-040.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from frontend_deploy.aws import is_transient_code, translate_transfer_error
from frontend_deploy.exceptions import AuthError, TransferError
from frontend_deploy.models import DELETE_BATCH_SIZE, ArtifactFile, RemoteObject

logger = Logger(service="frontend-deploy")


def _content_md5(hex_digest: str) -> str:
    return base64.b64encode(bytes.fromhex(hex_digest)).decode("ascii")


def _batched(keys: Sequence[str], size: int) -> list[Sequence[str]]:
    return [keys[i : i + size] for i in range(0, len(keys), size)]


# ---------------------------------------------------------------------------
# S3ObjectStore
# ---------------------------------------------------------------------------


class S3ObjectStore:
    """
    ObjectStore backed by an S3 bucket.

    All botocore failures are re-raised as AuthError (credential rejection)
    or TransferError (everything else, flagged transient where retrying
    can help).
    """

    def __init__(self, bucket: str, *, s3_client: Any) -> None:
        self.bucket = bucket
        self._s3: Any = s3_client

    def list_objects(self, prefix: str = "") -> dict[str, RemoteObject]:
        objects: dict[str, RemoteObject] = {}
        paginator = self._s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for entry in page.get("Contents", []):
                    key = str(entry["Key"])
                    objects[key] = RemoteObject(
                        key=key,
                        etag=str(entry.get("ETag", "")).strip('"'),
                        size=int(entry.get("Size", 0)),
                    )
        except (ClientError, BotoCoreError) as exc:
            raise translate_transfer_error(exc, action="listing") from exc
        logger.debug("Listed bucket", bucket=self.bucket, prefix=prefix, count=len(objects))
        return objects

    def upload(self, artifact: ArtifactFile) -> None:
        try:
            with artifact.path.open("rb") as body:
                self._s3.put_object(
                    Bucket=self.bucket,
                    Key=artifact.key,
                    Body=body,
                    ContentType=artifact.content_type,
                    CacheControl=artifact.cache_control,
                    ContentMD5=_content_md5(artifact.md5),
                )
        except OSError as exc:
            raise TransferError(
                f"Could not read artifact {artifact.path}: {exc}", key=artifact.key
            ) from exc
        except (ClientError, BotoCoreError) as exc:
            raise translate_transfer_error(exc, action="upload", key=artifact.key) from exc

    def delete(self, keys: Sequence[str]) -> list[str]:
        deleted: list[str] = []
        for batch in _batched(list(keys), DELETE_BATCH_SIZE):
            try:
                response = self._s3.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as exc:
                raise translate_transfer_error(exc, action="delete", key=batch[0]) from exc

            deleted.extend(str(d["Key"]) for d in response.get("Deleted", []))
            errors = response.get("Errors", [])
            if errors:
                first = errors[0]
                message = (
                    f"S3 delete failed for {len(errors)} key(s); first {first.get('Key')!r}: "
                    f"{first.get('Code')} {first.get('Message', '')}".rstrip()
                )
                codes = {str(e.get("Code", "")) for e in errors}
                if "AccessDenied" in codes:
                    raise AuthError(message)
                raise TransferError(
                    message,
                    key=first.get("Key"),
                    transient=all(is_transient_code(c) for c in codes),
                )
        return deleted


# ---------------------------------------------------------------------------
# InMemoryObjectStore
# ---------------------------------------------------------------------------


@dataclass
class StoredObject:
    body: bytes
    etag: str
    content_type: str
    cache_control: str


class InMemoryObjectStore:
    """
    Dict-backed ObjectStore for tests and local rehearsals.

    fail_keys:              uploads of these keys raise a non-transient TransferError.
    transient_fails:        key -> number of transient TransferErrors to raise
                            before the upload succeeds.
    transient_list_fails:   transient TransferErrors raised by list_objects first.
    transient_delete_fails: transient TransferErrors raised by delete first.
    """

    def __init__(
        self,
        bucket: str = "in-memory",
        *,
        objects: dict[str, bytes] | None = None,
        fail_keys: set[str] | None = None,
        transient_fails: dict[str, int] | None = None,
        transient_list_fails: int = 0,
        transient_delete_fails: int = 0,
    ) -> None:
        self.bucket = bucket
        self.objects: dict[str, StoredObject] = {}
        self.fail_keys = set(fail_keys or ())
        self.transient_fails = dict(transient_fails or {})
        self.transient_list_fails = transient_list_fails
        self.transient_delete_fails = transient_delete_fails
        self.list_calls = 0
        self.upload_calls: list[str] = []
        self.delete_calls: list[list[str]] = []
        for key, body in (objects or {}).items():
            self.put_bytes(key, body)

    def put_bytes(
        self, key: str, body: bytes, *, content_type: str = "", cache_control: str = ""
    ) -> None:
        self.objects[key] = StoredObject(
            body=body,
            etag=hashlib.md5(body, usedforsecurity=False).hexdigest(),
            content_type=content_type,
            cache_control=cache_control,
        )

    def list_objects(self, prefix: str = "") -> dict[str, RemoteObject]:
        self.list_calls += 1
        if self.transient_list_fails > 0:
            self.transient_list_fails -= 1
            raise TransferError("Injected transient listing failure: SlowDown", transient=True)
        return {
            key: RemoteObject(key=key, etag=obj.etag, size=len(obj.body))
            for key, obj in sorted(self.objects.items())
            if key.startswith(prefix)
        }

    def upload(self, artifact: ArtifactFile) -> None:
        self.upload_calls.append(artifact.key)
        if artifact.key in self.fail_keys:
            raise TransferError(f"Injected upload failure: {artifact.key}", key=artifact.key)
        remaining = self.transient_fails.get(artifact.key, 0)
        if remaining > 0:
            self.transient_fails[artifact.key] = remaining - 1
            raise TransferError(
                f"Injected transient failure: {artifact.key}", key=artifact.key, transient=True
            )
        self.put_bytes(
            artifact.key,
            artifact.path.read_bytes(),
            content_type=artifact.content_type,
            cache_control=artifact.cache_control,
        )

    def delete(self, keys: Sequence[str]) -> list[str]:
        self.delete_calls.append(list(keys))
        if self.transient_delete_fails > 0:
            self.transient_delete_fails -= 1
            raise TransferError(
                "Injected transient delete failure: InternalError", key=keys[0], transient=True
            )
        deleted = [k for k in keys if k in self.objects]
        for key in deleted:
            del self.objects[key]
        return deleted

    def snapshot(self) -> dict[str, str]:
        """key -> etag, for comparing against an ArtifactSet."""
        return {key: obj.etag for key, obj in self.objects.items()}

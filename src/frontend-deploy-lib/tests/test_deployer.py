"""
Tests for frontend_deploy.deployer — end-to-end pipeline behaviour.

Covers:
  - {index.html, main.js} to an empty bucket: 2 uploads, 0 deletions, 1 invalidation of /*.
  - Bucket {old.js}, artifacts {index.html}: 1 upload, 1 deletion, 1 invalidation.
  - Re-deploying an unchanged build: 0 uploads, 0 deletions, still 1 invalidation.
  - Build failure: no upload, no invalidation.
  - Upload failure partway: no invalidation.
  - Invalidation failure: sync is not undone.
  - Concurrent deploy to the same bucket is rejected.
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from frontend_deploy import (
    AuthError,
    BuildError,
    ConfigError,
    Deployer,
    DeployLockHeldError,
    InvalidationError,
    TransferError,
)
from frontend_deploy.artifacts import scan_artifacts
from frontend_deploy.cdn import CloudFrontInvalidator, InMemoryInvalidator
from frontend_deploy.lock import DeployLock, DynamoDbDeployLock, LocalDeployLock
from frontend_deploy.storage import InMemoryObjectStore, S3ObjectStore
from frontend_deploy.sync import RetryPolicy
from moto import mock_aws
from test_cdn import create_distribution

REGION = "eu-west-2"
BUCKET = "platform-spa-dev"
DISTRIBUTION_ID = "E2HNK8Z3X3JDVG"
NO_WAIT = RetryPolicy(max_attempts=3, base_delay_seconds=0)


def _deployer(
    store: InMemoryObjectStore,
    invalidator: InMemoryInvalidator | None = None,
    lock: DeployLock | None = None,
) -> tuple[Deployer, InMemoryInvalidator]:
    invalidator = invalidator or InMemoryInvalidator()
    deployer = Deployer(
        store=store,
        invalidator=invalidator,
        lock=lock or LocalDeployLock(),
        retry_policy=NO_WAIT,
        owner="tests",
    )
    return deployer, invalidator


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_deploy_to_empty_bucket(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET)
    deployer, invalidator = _deployer(store)

    summary = deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert summary.uploaded == 2
    assert summary.deleted == 0
    assert len(invalidator.requests) == 1
    assert invalidator.requests[0].paths == ("/*",)
    assert summary.invalidation_id == invalidator.requests[0].invalidation_id
    assert store.snapshot() == {a.key: a.md5 for a in scan_artifacts(site_dir)}


def test_deploy_replaces_stale_objects(tmp_path: Path, make_site) -> None:
    make_site(tmp_path, {"index.html": "<html>v2</html>"})
    store = InMemoryObjectStore(BUCKET, objects={"old.js": b"legacy()"})
    deployer, invalidator = _deployer(store)

    summary = deployer.deploy(tmp_path, BUCKET, DISTRIBUTION_ID)

    assert (summary.uploaded, summary.deleted) == (1, 1)
    assert summary.deleted_keys == ("old.js",)
    assert len(invalidator.requests) == 1
    assert set(store.objects) == {"index.html"}


def test_redeploy_unchanged_is_idempotent(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET)
    deployer, invalidator = _deployer(store)
    deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)
    store.upload_calls.clear()

    summary = deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert (summary.uploaded, summary.deleted, summary.unchanged) == (0, 0, 2)
    assert store.upload_calls == []
    assert store.delete_calls == []
    assert len(invalidator.requests) == 2


def test_remote_matches_artifacts_after_deploy(tmp_path: Path, make_site) -> None:
    make_site(
        tmp_path,
        {
            "index.html": "i",
            "assets/app.1a2b.js": "a",
            "assets/app.1a2b.css": "c",
            "img/x.svg": "s",
        },
    )
    store = InMemoryObjectStore(
        BUCKET, objects={"index.html": b"old", "assets/app.0000.js": b"old", "img/x.svg": b"s"}
    )
    deployer, _ = _deployer(store)

    deployer.deploy(tmp_path, BUCKET, DISTRIBUTION_ID)

    assert store.snapshot() == {a.key: a.md5 for a in scan_artifacts(tmp_path)}


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


def test_missing_artifact_dir_touches_nothing(tmp_path: Path) -> None:
    store = InMemoryObjectStore(BUCKET, objects={"index.html": b"live"})
    deployer, invalidator = _deployer(store)

    with pytest.raises(ConfigError):
        deployer.deploy(tmp_path / "missing", BUCKET, DISTRIBUTION_ID)

    assert store.upload_calls == []
    assert store.delete_calls == []
    assert invalidator.requests == []


@pytest.mark.parametrize(("bucket", "distribution"), [("", DISTRIBUTION_ID), (BUCKET, " ")])
def test_empty_identifiers_are_config_errors(
    site_dir: Path, bucket: str, distribution: str
) -> None:
    deployer, _ = _deployer(InMemoryObjectStore(BUCKET))
    with pytest.raises(ConfigError):
        deployer.deploy(site_dir, bucket, distribution)


def test_store_bound_to_other_bucket_is_config_error(site_dir: Path) -> None:
    deployer, _ = _deployer(InMemoryObjectStore("somewhere-else"))
    with pytest.raises(ConfigError, match="bound to bucket"):
        deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)


def test_build_failure_skips_upload_and_invalidation(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET)
    deployer, invalidator = _deployer(store)

    with pytest.raises(BuildError):
        deployer.run_pipeline(
            site_dir,
            BUCKET,
            DISTRIBUTION_ID,
            build_command=[sys.executable, "-c", "import sys; sys.exit(1)"],
        )

    assert store.upload_calls == []
    assert invalidator.requests == []


def test_pipeline_builds_then_deploys(tmp_path: Path) -> None:
    store = InMemoryObjectStore(BUCKET)
    deployer, invalidator = _deployer(store)
    script = (
        "import pathlib; d = pathlib.Path('dist'); d.mkdir(); "
        "(d / 'index.html').write_text('<html/>')"
    )

    summary = deployer.run_pipeline(
        tmp_path / "dist",
        BUCKET,
        DISTRIBUTION_ID,
        build_command=[sys.executable, "-c", script],
        build_cwd=tmp_path,
    )

    assert summary.uploaded == 1
    assert set(store.objects) == {"index.html"}
    assert len(invalidator.requests) == 1


def test_upload_failure_skips_invalidation(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET, fail_keys={"index.html"})
    deployer, invalidator = _deployer(store)

    with pytest.raises(TransferError):
        deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    # main.js went up before index.html failed; no rollback.
    assert set(store.objects) == {"main.js"}
    assert invalidator.requests == []


def test_invalidation_failure_keeps_synced_files(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET)
    deployer, _ = _deployer(store, invalidator=InMemoryInvalidator(reject=True))

    with pytest.raises(InvalidationError):
        deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert set(store.objects) == {"index.html", "main.js"}


def test_concurrent_deploy_is_rejected(site_dir: Path) -> None:
    lock = LocalDeployLock()
    store = InMemoryObjectStore(BUCKET)
    deployer, invalidator = _deployer(store, lock=lock)

    with lock.held(BUCKET, acquired_by="ci/other-run"):
        with pytest.raises(DeployLockHeldError):
            deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert store.upload_calls == []
    assert invalidator.requests == []
    deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)


def test_lock_released_after_failure(site_dir: Path) -> None:
    lock = LocalDeployLock()
    store = InMemoryObjectStore(BUCKET, fail_keys={"main.js"})
    deployer, _ = _deployer(store, lock=lock)

    with pytest.raises(TransferError):
        deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert not lock.is_held(BUCKET)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def test_dry_run_changes_nothing(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET, objects={"old.js": b"legacy"})
    deployer, invalidator = _deployer(store)

    summary = deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID, dry_run=True)

    assert summary.dry_run is True
    assert (summary.uploaded, summary.deleted) == (2, 1)
    assert summary.invalidation_id is None
    assert set(store.objects) == {"old.js"}
    assert invalidator.requests == []
    assert summary.as_log_line().startswith("DEPLOY_DRY_RUN")


def test_wait_blocks_on_invalidation(site_dir: Path) -> None:
    deployer, invalidator = _deployer(InMemoryObjectStore(BUCKET))
    summary = deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID, wait=True)
    assert invalidator.waited == [summary.invalidation_id]


def test_wait_happens_after_lock_release(site_dir: Path) -> None:
    lock = LocalDeployLock()
    held_while_waiting: list[bool] = []

    class _RecordingInvalidator(InMemoryInvalidator):
        def wait_for_invalidation(self, distribution_id: str, invalidation_id: str) -> None:
            held_while_waiting.append(lock.is_held(BUCKET))
            super().wait_for_invalidation(distribution_id, invalidation_id)

    deployer, _ = _deployer(
        InMemoryObjectStore(BUCKET), invalidator=_RecordingInvalidator(), lock=lock
    )

    deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID, wait=True)

    assert held_while_waiting == [False]


def test_pipeline_passes_invalidation_paths(site_dir: Path) -> None:
    deployer, invalidator = _deployer(InMemoryObjectStore(BUCKET))

    deployer.run_pipeline(
        site_dir,
        BUCKET,
        DISTRIBUTION_ID,
        build_command=None,
        invalidation_paths=["/index.html", "/config.json"],
    )

    assert invalidator.requests[0].paths == ("/index.html", "/config.json")


def test_key_prefix_and_exclude(tmp_path: Path, make_site) -> None:
    make_site(tmp_path, {"index.html": "i", "index.html.map": "{}"})
    store = InMemoryObjectStore(
        BUCKET, objects={"app/old.js": b"x", "app/robots.txt": b"keep", "root.txt": b"keep"}
    )
    deployer, _ = _deployer(store)

    summary = deployer.deploy(
        tmp_path,
        BUCKET,
        DISTRIBUTION_ID,
        key_prefix="app",
        exclude=["*.map", "robots.txt"],
    )

    assert summary.uploaded_keys == ("app/index.html",)
    assert summary.deleted_keys == ("app/old.js",)
    assert set(store.objects) == {"app/index.html", "app/robots.txt", "root.txt"}


def test_transient_listing_failure_is_retried(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET, transient_list_fails=2)
    deployer, invalidator = _deployer(store)

    summary = deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert store.list_calls == 3
    assert summary.uploaded == 2
    assert len(invalidator.requests) == 1


def test_listing_retries_are_bounded(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET, transient_list_fails=5)
    deployer, invalidator = _deployer(store)

    with pytest.raises(TransferError):
        deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert store.list_calls == 3
    assert store.upload_calls == []
    assert invalidator.requests == []


def _ddb_lock_failing_release(code: str) -> DynamoDbDeployLock:
    ddb = MagicMock()
    ddb.put_item.return_value = {}
    ddb.delete_item.side_effect = ClientError(
        {"Error": {"Code": code, "Message": code}}, "DeleteItem"
    )
    return DynamoDbDeployLock(ddb_client=ddb, table_name="platform-ops-locks")


def test_lock_release_failure_keeps_transfer_error(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET, fail_keys={"main.js"})
    deployer, invalidator = _deployer(
        store, lock=_ddb_lock_failing_release("ProvisionedThroughputExceededException")
    )

    with pytest.raises(TransferError) as excinfo:
        deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert excinfo.value.exit_code == 5
    assert invalidator.requests == []


def test_lock_release_failure_after_successful_deploy(site_dir: Path) -> None:
    store = InMemoryObjectStore(BUCKET)
    deployer, invalidator = _deployer(store, lock=_ddb_lock_failing_release("InternalServerError"))

    summary = deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert summary.uploaded == 2
    assert summary.invalidation_id == invalidator.requests[0].invalidation_id


# ---------------------------------------------------------------------------
# Real adapters against moto
# ---------------------------------------------------------------------------


@mock_aws
def test_deploy_against_moto_s3_and_cloudfront(site_dir: Path) -> None:
    s3 = boto3.client("s3", region_name=REGION)
    s3.create_bucket(Bucket=BUCKET, CreateBucketConfiguration={"LocationConstraint": REGION})
    s3.put_object(Bucket=BUCKET, Key="old.js", Body=b"legacy()")
    cloudfront, distribution_id = create_distribution()
    deployer = Deployer(
        store=S3ObjectStore(BUCKET, s3_client=s3),
        invalidator=CloudFrontInvalidator(cloudfront_client=cloudfront),
        lock=LocalDeployLock(),
        retry_policy=NO_WAIT,
    )

    first = deployer.deploy(site_dir, BUCKET, distribution_id)
    second = deployer.deploy(site_dir, BUCKET, distribution_id)

    assert (first.uploaded, first.deleted) == (2, 1)
    assert (second.uploaded, second.deleted, second.unchanged) == (0, 0, 2)
    keys = sorted(o["Key"] for o in s3.list_objects_v2(Bucket=BUCKET)["Contents"])
    assert keys == ["index.html", "main.js"]
    invalidations = cloudfront.list_invalidations(DistributionId=distribution_id)
    assert invalidations["InvalidationList"]["Quantity"] == 2


def test_bad_credentials_surface_as_auth_error(site_dir: Path) -> None:
    s3 = MagicMock()
    s3.get_paginator.return_value.paginate.side_effect = ClientError(
        {"Error": {"Code": "InvalidAccessKeyId", "Message": "bad key"}}, "ListObjectsV2"
    )
    invalidator = InMemoryInvalidator()
    deployer = Deployer(
        store=S3ObjectStore(BUCKET, s3_client=s3),
        invalidator=invalidator,
        lock=LocalDeployLock(),
        retry_policy=NO_WAIT,
    )

    with pytest.raises(AuthError) as excinfo:
        deployer.deploy(site_dir, BUCKET, DISTRIBUTION_ID)

    assert excinfo.value.exit_code == 4
    assert invalidator.requests == []

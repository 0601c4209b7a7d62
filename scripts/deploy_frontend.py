"""
deploy_frontend.py — Deploy SPA to S3 and invalidate CloudFront distribution.

Reads S3 bucket name and CloudFront distribution ID from flags, environment
(FRONTEND_BUCKET / FRONTEND_DISTRIBUTION_ID) or SSM.
Optionally runs the build command first.
Mirror-syncs spa/dist/ to S3 with correct cache-control headers.
Creates CloudFront invalidation for /* path.

Exit codes:
    0  deploy succeeded
    1  unexpected error
    2  configuration error (missing/empty artifact dir, bucket, distribution, region)
    3  build failed
    4  AWS rejected credentials
    5  upload/delete/listing failed
    6  CloudFront invalidation failed
    7  another deploy holds the lock for this bucket, or the lock table failed

Usage:
    uv run python scripts/deploy_frontend.py --env <env> [--build-cmd "npm run build"]

Called by: .github/workflows/deploy-frontend.yml

Implemented in TASK-040.
"""

from __future__ import annotations

import argparse
import logging
from typing import Any

from frontend_deploy import DeployError, Deployer, DeploySummary
from frontend_deploy.aws import ClientSettings, make_client
from frontend_deploy.cdn import CloudFrontInvalidator
from frontend_deploy.config import DEFAULT_ENV, DeployConfig, require_aws_region, resolve_config
from frontend_deploy.lock import DeployLock, DynamoDbDeployLock, process_lock
from frontend_deploy.storage import S3ObjectStore
from frontend_deploy.sync import RetryPolicy

logger = logging.getLogger("deploy_frontend")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# CloudFront is a global service; its API endpoint lives in us-east-1.
CLOUDFRONT_REGION = "us-east-1"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Build the SPA, mirror it to S3 and invalidate CloudFront"
    )
    parser.add_argument(
        "--env",
        default=DEFAULT_ENV,
        choices=["dev", "staging", "prod"],
        help="Target environment (selects SSM parameters)",
    )
    parser.add_argument("--artifact-dir", default=None, help="Build output directory")
    parser.add_argument("--bucket", default=None, help="Target S3 bucket (overrides SSM)")
    parser.add_argument(
        "--distribution-id", default=None, help="CloudFront distribution ID (overrides SSM)"
    )
    parser.add_argument("--key-prefix", default=None, help="Deploy under this key prefix")
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Glob of relative keys to skip and never delete (repeatable)",
    )
    parser.add_argument(
        "--invalidation-path",
        action="append",
        default=[],
        help="CloudFront path to invalidate (repeatable, default /*)",
    )
    parser.add_argument("--build-cmd", default=None, help="Build command to run first")
    parser.add_argument("--build-cwd", default=None, help="Working directory for the build")
    parser.add_argument(
        "--lock-table",
        default=None,
        help="DynamoDB table for the cross-runner deploy lock (default: in-process lock)",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Attempts per transfer on transient errors (default 3)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the sync plan without uploading, deleting or invalidating",
    )
    parser.add_argument(
        "--wait",
        action="store_true",
        help="Wait for the CloudFront invalidation to complete",
    )
    return parser.parse_args(argv)


def build_deployer(config: DeployConfig) -> Deployer:
    """Wire boto3 clients into a Deployer for config."""
    settings = config.client_settings()
    s3 = make_client("s3", settings)
    cloudfront = make_client(
        "cloudfront",
        ClientSettings(
            region=CLOUDFRONT_REGION,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
        ),
    )
    lock: DeployLock
    if config.lock_table:
        lock = DynamoDbDeployLock(
            ddb_client=make_client("dynamodb", settings), table_name=config.lock_table
        )
    else:
        lock = process_lock()

    return Deployer(
        store=S3ObjectStore(config.bucket, s3_client=s3),
        invalidator=CloudFrontInvalidator(cloudfront_client=cloudfront),
        lock=lock,
        retry_policy=RetryPolicy(max_attempts=config.max_attempts),
    )


def load_config(args: argparse.Namespace) -> DeployConfig:
    ssm: Any = None
    if not (args.bucket and args.distribution_id):
        ssm = make_client("ssm", ClientSettings(region=require_aws_region()))
    return resolve_config(
        env_name=args.env,
        bucket=args.bucket,
        distribution_id=args.distribution_id,
        artifact_dir=args.artifact_dir,
        key_prefix=args.key_prefix,
        exclude=tuple(args.exclude),
        invalidation_paths=tuple(args.invalidation_path),
        lock_table=args.lock_table,
        max_attempts=args.max_attempts,
        build_command=args.build_cmd,
        build_cwd=args.build_cwd,
        dry_run=args.dry_run,
        wait=args.wait,
        ssm_client=ssm,
    )


def run(config: DeployConfig, deployer: Deployer | None = None) -> DeploySummary:
    """Run the pipeline described by config."""
    deployer = deployer or build_deployer(config)
    logger.info(
        "Deploying %s to s3://%s/%s (distribution %s, env %s)",
        config.artifact_dir,
        config.bucket,
        config.key_prefix,
        config.distribution_id,
        config.env,
    )
    return deployer.run_pipeline(
        config.artifact_dir,
        config.bucket,
        config.distribution_id,
        build_command=config.build_command,
        build_cwd=config.build_cwd,
        key_prefix=config.key_prefix,
        exclude=config.exclude,
        invalidation_paths=config.invalidation_paths,
        dry_run=config.dry_run,
        wait=config.wait,
    )


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    args = parse_args(argv)
    try:
        config = load_config(args)
        summary = run(config)
    except DeployError as exc:
        logger.error("deploy_frontend failed at step=%s: %s", exc.step, exc)
        print(f"DEPLOY_FAILED step={exc.step} exit_code={exc.exit_code}")
        return exc.exit_code
    except Exception as exc:
        logger.error("deploy_frontend failed: %s", exc)
        print("DEPLOY_FAILED step=unknown exit_code=1")
        return 1

    print(summary.as_log_line())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

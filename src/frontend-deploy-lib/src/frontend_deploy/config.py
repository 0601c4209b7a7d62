"""
frontend_deploy.config — Deploy configuration resolution.

Resolution order per setting:
    explicit value (CLI flag) -> environment variable -> SSM parameter -> default

SSM parameters (written by the frontend infrastructure stack):
    /platform/frontend/{env}/bucket-name
    /platform/frontend/{env}/distribution-id
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from frontend_deploy.aws import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_READ_TIMEOUT_SECONDS,
    ClientSettings,
    error_code,
    is_auth_error,
)
from frontend_deploy.exceptions import AuthError, ConfigError
from frontend_deploy.models import INVALIDATE_ALL_PATHS, DeployStep

logger = Logger(service="frontend-deploy")

DEFAULT_ENV = "dev"
DEFAULT_ARTIFACT_DIR = "spa/dist"
DEFAULT_MAX_ATTEMPTS = 3

ENV_BUCKET = "FRONTEND_BUCKET"
ENV_DISTRIBUTION_ID = "FRONTEND_DISTRIBUTION_ID"
ENV_ARTIFACT_DIR = "FRONTEND_ARTIFACT_DIR"
ENV_KEY_PREFIX = "FRONTEND_KEY_PREFIX"
ENV_LOCK_TABLE = "FRONTEND_DEPLOY_LOCK_TABLE"
ENV_MAX_ATTEMPTS = "FRONTEND_DEPLOY_MAX_ATTEMPTS"


def bucket_param_name(env_name: str) -> str:
    return f"/platform/frontend/{env_name}/bucket-name"


def distribution_param_name(env_name: str) -> str:
    return f"/platform/frontend/{env_name}/distribution-id"


@dataclass(frozen=True)
class DeployConfig:
    env: str
    region: str
    bucket: str
    distribution_id: str
    artifact_dir: Path
    key_prefix: str = ""
    exclude: tuple[str, ...] = ()
    lock_table: str | None = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    read_timeout: int = DEFAULT_READ_TIMEOUT_SECONDS
    build_command: str | None = None
    build_cwd: Path | None = None
    dry_run: bool = False
    wait: bool = False
    invalidation_paths: tuple[str, ...] = INVALIDATE_ALL_PATHS

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            region=self.region,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
        )


def require_aws_region(environ: Mapping[str, str] | None = None) -> str:
    """Read AWS_REGION (or AWS_DEFAULT_REGION) and fail fast if missing."""
    env = os.environ if environ is None else environ
    region = (env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or "").strip()
    if not region:
        raise ConfigError("AWS_REGION must be set")
    return region


def read_ssm_parameter(ssm_client: Any, name: str) -> str | None:
    """Return the parameter value, or None when it does not exist."""
    try:
        response = ssm_client.get_parameter(Name=name)
    except ClientError as exc:
        if error_code(exc) == "ParameterNotFound":
            logger.info("SSM parameter not found", name=name)
            return None
        if is_auth_error(exc):
            raise AuthError(
                f"AWS rejected credentials reading SSM parameter {name}: {exc}",
                step=DeployStep.VALIDATE,
            ) from exc
        raise ConfigError(f"Could not read SSM parameter {name}: {exc}") from exc
    except BotoCoreError as exc:
        if is_auth_error(exc):
            raise AuthError(
                f"No AWS credentials for SSM parameter {name}: {exc}", step=DeployStep.VALIDATE
            ) from exc
        raise ConfigError(f"Could not read SSM parameter {name}: {exc}") from exc
    value = response["Parameter"].get("Value")
    return str(value).strip() if value else None


def _first(*values: str | None) -> str | None:
    for value in values:
        if value is not None and value.strip():
            return value.strip()
    return None


def _parse_max_attempts(raw: str | int | None) -> int:
    if raw is None or raw == "":
        return DEFAULT_MAX_ATTEMPTS
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{ENV_MAX_ATTEMPTS} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ConfigError(f"{ENV_MAX_ATTEMPTS} must be >= 1, got {value}")
    return value


def resolve_config(
    *,
    env_name: str = DEFAULT_ENV,
    bucket: str | None = None,
    distribution_id: str | None = None,
    artifact_dir: str | None = None,
    key_prefix: str | None = None,
    exclude: tuple[str, ...] = (),
    invalidation_paths: tuple[str, ...] = (),
    lock_table: str | None = None,
    max_attempts: int | None = None,
    build_command: str | None = None,
    build_cwd: str | None = None,
    dry_run: bool = False,
    wait: bool = False,
    environ: Mapping[str, str] | None = None,
    ssm_client: Any = None,
) -> DeployConfig:
    """Build a DeployConfig, consulting SSM only for values still missing.

    ssm_client is only required when bucket or distribution id is not given
    explicitly or via the environment.
    """
    env = os.environ if environ is None else environ
    region = require_aws_region(env)

    resolved_bucket = _first(bucket, env.get(ENV_BUCKET))
    resolved_distribution = _first(distribution_id, env.get(ENV_DISTRIBUTION_ID))
    if (resolved_bucket is None or resolved_distribution is None) and ssm_client is not None:
        if resolved_bucket is None:
            resolved_bucket = read_ssm_parameter(ssm_client, bucket_param_name(env_name))
        if resolved_distribution is None:
            resolved_distribution = read_ssm_parameter(
                ssm_client, distribution_param_name(env_name)
            )

    if not resolved_bucket:
        raise ConfigError(
            f"No bucket configured: pass --bucket, set {ENV_BUCKET}, "
            f"or create SSM {bucket_param_name(env_name)}"
        )
    if not resolved_distribution:
        raise ConfigError(
            f"No distribution configured: pass --distribution-id, set {ENV_DISTRIBUTION_ID}, "
            f"or create SSM {distribution_param_name(env_name)}"
        )

    return DeployConfig(
        env=env_name,
        region=region,
        bucket=resolved_bucket,
        distribution_id=resolved_distribution,
        artifact_dir=Path(_first(artifact_dir, env.get(ENV_ARTIFACT_DIR)) or DEFAULT_ARTIFACT_DIR),
        key_prefix=_first(key_prefix, env.get(ENV_KEY_PREFIX)) or "",
        exclude=tuple(exclude),
        invalidation_paths=tuple(invalidation_paths) or INVALIDATE_ALL_PATHS,
        lock_table=_first(lock_table, env.get(ENV_LOCK_TABLE)),
        max_attempts=_parse_max_attempts(
            max_attempts if max_attempts is not None else env.get(ENV_MAX_ATTEMPTS)
        ),
        build_command=_first(build_command),
        build_cwd=Path(build_cwd) if build_cwd else None,
        dry_run=dry_run,
        wait=wait,
    )

"""
frontend_deploy.aws — boto3 client construction and botocore error classification.

Every client gets bounded connect/read timeouts and botocore's "standard"
retry mode.  Errors are classified here so storage.py and cdn.py map them
onto the DeployError taxonomy the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    HTTPClientError,
    NoCredentialsError,
    PartialCredentialsError,
)
from botocore.exceptions import ConnectionError as BotoConnectionError

from frontend_deploy.exceptions import AuthError, TransferError

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10
DEFAULT_READ_TIMEOUT_SECONDS = 60
DEFAULT_BOTOCORE_MAX_ATTEMPTS = 3

_AUTH_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "AllAccessDisabled",
        "ExpiredToken",
        "InvalidAccessKeyId",
        "InvalidClientTokenId",
        "InvalidToken",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    }
)
_TRANSIENT_ERROR_CODES = frozenset(
    {
        "InternalError",
        "RequestTimeout",
        "ServiceUnavailable",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
    }
)


@dataclass(frozen=True)
class ClientSettings:
    region: str
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    read_timeout: int = DEFAULT_READ_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_BOTOCORE_MAX_ATTEMPTS

    def botocore_config(self) -> Config:
        return Config(
            region_name=self.region,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            retries={"mode": "standard", "max_attempts": self.max_attempts},
        )


def make_client(service: str, settings: ClientSettings) -> Any:
    return boto3.client(service, region_name=settings.region, config=settings.botocore_config())


def error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _http_status(error: ClientError) -> int:
    return int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def is_auth_error(error: BaseException) -> bool:
    if isinstance(error, NoCredentialsError | PartialCredentialsError):
        return True
    return isinstance(error, ClientError) and error_code(error) in _AUTH_ERROR_CODES


def is_transient_code(code: str | None) -> bool:
    return bool(code) and code in _TRANSIENT_ERROR_CODES


def is_transient_error(error: BaseException) -> bool:
    if isinstance(error, BotoConnectionError | HTTPClientError):
        return True
    if isinstance(error, ClientError):
        return is_transient_code(error_code(error)) or _http_status(error) >= 500
    return False


def translate_transfer_error(
    error: ClientError | BotoCoreError, *, action: str, key: str | None = None
) -> AuthError | TransferError:
    """Map a botocore failure during listing/upload/delete to AuthError or TransferError."""
    target = f" {key!r}" if key else ""
    if is_auth_error(error):
        return AuthError(f"AWS rejected credentials during {action}{target}: {error}")
    return TransferError(
        f"S3 {action} failed{target}: {error}",
        key=key,
        transient=is_transient_error(error),
    )

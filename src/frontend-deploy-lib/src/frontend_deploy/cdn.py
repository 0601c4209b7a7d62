"""
frontend_deploy.cdn — CloudFront invalidation adapter.

One invalidation per deploy.  A failure here never undoes the sync that
preceded it; stale content keeps being served until the deploy is re-run.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Sequence
from typing import Any

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from frontend_deploy.aws import error_code
from frontend_deploy.exceptions import InvalidationError
from frontend_deploy.models import InvalidationResult, InvalidationStatus

logger = Logger(service="frontend-deploy")

DEFAULT_WAIT_DELAY_SECONDS = 20
DEFAULT_WAIT_MAX_ATTEMPTS = 30  # ~10 minutes


def new_caller_reference(bucket: str) -> str:
    """Unique per call; CloudFront treats a repeated reference as the same request."""
    return f"frontend-deploy-{bucket}-{int(time.time())}-{uuid.uuid4().hex[:8]}"


class CloudFrontInvalidator:
    """CdnInvalidator backed by the CloudFront API."""

    def __init__(
        self,
        *,
        cloudfront_client: Any,
        wait_delay_seconds: int = DEFAULT_WAIT_DELAY_SECONDS,
        wait_max_attempts: int = DEFAULT_WAIT_MAX_ATTEMPTS,
    ) -> None:
        self._cloudfront: Any = cloudfront_client
        self._wait_delay = wait_delay_seconds
        self._wait_max_attempts = wait_max_attempts

    def create_invalidation(
        self, distribution_id: str, paths: Sequence[str], *, caller_reference: str
    ) -> InvalidationResult:
        items = list(paths)
        try:
            response = self._cloudfront.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(items), "Items": items},
                    "CallerReference": caller_reference,
                },
            )
        except ClientError as exc:
            code = error_code(exc)
            if code == "NoSuchDistribution":
                message = f"CloudFront distribution not found: {distribution_id}"
            else:
                message = f"CloudFront rejected invalidation for {distribution_id}: {exc}"
            raise InvalidationError(message, distribution_id=distribution_id) from exc
        except BotoCoreError as exc:
            raise InvalidationError(
                f"CloudFront invalidation request failed for {distribution_id}: {exc}",
                distribution_id=distribution_id,
            ) from exc

        invalidation = response["Invalidation"]
        return InvalidationResult(
            invalidation_id=str(invalidation["Id"]),
            status=str(invalidation.get("Status", InvalidationStatus.IN_PROGRESS)),
            paths=tuple(items),
            caller_reference=caller_reference,
        )

    def wait_for_invalidation(self, distribution_id: str, invalidation_id: str) -> None:
        logger.info(
            "Waiting for invalidation to complete",
            distribution_id=distribution_id,
            invalidation_id=invalidation_id,
        )
        waiter = self._cloudfront.get_waiter("invalidation_completed")
        try:
            waiter.wait(
                DistributionId=distribution_id,
                Id=invalidation_id,
                WaiterConfig={"Delay": self._wait_delay, "MaxAttempts": self._wait_max_attempts},
            )
        except (WaiterError, ClientError) as exc:
            raise InvalidationError(
                f"Invalidation {invalidation_id} did not complete: {exc}",
                distribution_id=distribution_id,
            ) from exc


class InMemoryInvalidator:
    """Records invalidation requests instead of sending them."""

    def __init__(self, *, reject: bool = False) -> None:
        self.reject = reject
        self.requests: list[InvalidationResult] = []
        self.waited: list[str] = []

    def create_invalidation(
        self, distribution_id: str, paths: Sequence[str], *, caller_reference: str
    ) -> InvalidationResult:
        if self.reject:
            raise InvalidationError(
                f"Injected invalidation rejection for {distribution_id}",
                distribution_id=distribution_id,
            )
        result = InvalidationResult(
            invalidation_id=f"I{len(self.requests) + 1:013d}",
            status=InvalidationStatus.IN_PROGRESS,
            paths=tuple(paths),
            caller_reference=caller_reference,
        )
        self.requests.append(result)
        return result

    def wait_for_invalidation(self, distribution_id: str, invalidation_id: str) -> None:
        self.waited.append(invalidation_id)

"""
frontend_deploy.ports — Abstract ports the Deployer talks through.

S3 and CloudFront adapters live in storage.py / cdn.py; the in-memory
implementations next to them back tests and dry runs.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from frontend_deploy.models import ArtifactFile, InvalidationResult, RemoteObject


class ObjectStore(Protocol):
    """Protocol for the bucket holding the deployed site."""

    bucket: str

    def list_objects(self, prefix: str = "") -> dict[str, RemoteObject]:
        """Return every object under prefix keyed by object key."""
        ...

    def upload(self, artifact: ArtifactFile) -> None:
        """Upload one artifact, setting Content-Type and Cache-Control."""
        ...

    def delete(self, keys: Sequence[str]) -> list[str]:
        """Delete keys. Returns the keys actually deleted."""
        ...


class CdnInvalidator(Protocol):
    """Protocol for the CDN distribution in front of the bucket."""

    def create_invalidation(
        self, distribution_id: str, paths: Sequence[str], *, caller_reference: str
    ) -> InvalidationResult:
        """Submit one invalidation batch."""
        ...

    def wait_for_invalidation(self, distribution_id: str, invalidation_id: str) -> None:
        """Block until the invalidation reports Completed."""
        ...

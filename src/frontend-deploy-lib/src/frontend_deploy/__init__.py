"""
frontend_deploy — Deploy a static SPA build to S3 and invalidate CloudFront.

The only supported way to publish spa/dist; scripts/deploy_frontend.py is
the CLI wrapper used by CI.

Implemented in TASK-040.
"""

from frontend_deploy.deployer import Deployer
from frontend_deploy.exceptions import (
    AuthError,
    BuildError,
    ConfigError,
    DeployError,
    DeployLockHeldError,
    InvalidationError,
    TransferError,
)
from frontend_deploy.models import DeploySummary

__all__ = [
    "AuthError",
    "BuildError",
    "ConfigError",
    "DeployError",
    "DeployLockHeldError",
    "DeploySummary",
    "Deployer",
    "InvalidationError",
    "TransferError",
]

"""Shared fixtures for frontend_deploy tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

REGION = "eu-west-2"
BUCKET = "platform-spa-dev"


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set minimal AWS env vars required by the library and moto."""
    monkeypatch.setenv("AWS_REGION", REGION)
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    for name in (
        "FRONTEND_BUCKET",
        "FRONTEND_DISTRIBUTION_ID",
        "FRONTEND_ARTIFACT_DIR",
        "FRONTEND_KEY_PREFIX",
        "FRONTEND_DEPLOY_LOCK_TABLE",
        "FRONTEND_DEPLOY_MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)


def write_site(root: Path, files: dict[str, str]) -> Path:
    """Create a fake build output under root and return it."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_site() -> Callable[[Path, dict[str, str]], Path]:
    return write_site


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    return write_site(
        tmp_path / "dist",
        {
            "index.html": "<html><script src='/main.js'></script></html>",
            "main.js": "console.log('hello');",
        },
    )

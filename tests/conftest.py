"""Root pytest configuration for all tests."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from tests.utils import git

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)

_WB_ENV = ("WB_HOST", "WB_PORT", "WB_WORKSPACE", "WB_DIAGNOSTICS_FILE", "WB_LOG")


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's own config and WB_* variables out of tests."""
    for name in _WB_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))


@pytest.fixture
def git_workspace(tmp_path: Path) -> Path:
    """A git repository with one committed file, ``app.py``."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    root = tmp_path / "workspace"
    root.mkdir()
    git(root, "init", "-q")
    git(root, "config", "user.name", "Test User")
    git(root, "config", "user.email", "test@example.com")
    git(root, "config", "commit.gpgsign", "false")
    (root / "app.py").write_text("print('v1')\n")
    (root / ".gitignore").write_text("*.log\n")
    git(root, "add", "-A")
    git(root, "commit", "-q", "-m", "initial")
    return root

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=Test",
            "-c", "user.email=test@example.com",
            "-c", "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def init_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    (path / "README.md").write_text("# Test Repo\n")
    git(path, "add", "README.md")
    git(path, "commit", "-q", "-m", "Initial commit")
    return path


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """Repository on main with feature-x, feature-y and hotfix branches."""
    path = init_repo(tmp_path / "repo")
    for branch in ("feature-x", "feature-y", "hotfix"):
        git(path, "branch", branch)
    return path


@pytest.fixture
def cloned_repo(tmp_path: Path) -> Path:
    """Clone of a bare origin that has main and a remote-only branch."""
    seed = init_repo(tmp_path / "seed")
    git(seed, "branch", "remote-only")
    origin = tmp_path / "origin.git"
    git(tmp_path, "clone", "-q", "--bare", str(seed), str(origin))
    git(tmp_path, "clone", "-q", str(origin), "clone")
    return tmp_path / "clone"

"""Shared fixtures: throw-away git repositories."""

from __future__ import annotations

import subprocess

import pytest

APP_LINES = 60


def _app_source(changed: dict[int, str] | None = None) -> str:
    changed = changed or {}
    return "".join(f"{changed.get(n, f'value_{n} = {n}')}\n" for n in range(1, APP_LINES + 1))


@pytest.fixture
def git(monkeypatch, tmp_path):
    """Run git in a repository with the user's own config shut out."""
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(var, raising=False)

    def run(repo, *args: str) -> str:
        result = subprocess.run(["git", *args], cwd=str(repo), check=True, capture_output=True, text=True)
        return result.stdout.strip()

    return run


@pytest.fixture
def git_repo(tmp_path, git):
    """A repository with one commit holding a 60-line ``app.py``."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "user.email", "test@example.com")
    (repo / "app.py").write_text(_app_source())
    (repo / "README.md").write_text("# demo\n")
    git(repo, "add", "app.py", "README.md")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def edit_app(git_repo):
    """Rewrite lines of app.py in the work tree: ``edit_app({42: "x = None"})``."""

    def edit(changed: dict[int, str]) -> None:
        (git_repo / "app.py").write_text(_app_source(changed))

    return edit

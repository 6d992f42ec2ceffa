"""Tests for configuration loading."""

import pytest

from remark_core.config import (
    DEFAULT_CONFIG,
    ENV_VARS,
    diff_context,
    diff_layout,
    load_config,
    set_diff_layout,
    toggle_diff_layout,
)
from remark_store.errors import ArgumentError
from remark_store.git import GitRepo


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config == DEFAULT_CONFIG
    assert config["notes_ref"] is None
    assert config["fetch_notes"] is True
    assert config["remote"] == "origin"


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".remark.yml"
    cfg.write_text("base_ref: main\nprompt_context: 2\n")
    config = load_config(config_path=str(cfg))
    assert config["base_ref"] == "main"
    assert config["prompt_context"] == 2


def test_empty_config_file(tmp_path):
    cfg = tmp_path / ".remark.yml"
    cfg.write_text("")
    assert load_config(config_path=str(cfg)) == DEFAULT_CONFIG


def test_config_file_must_be_a_mapping(tmp_path):
    cfg = tmp_path / ".remark.yml"
    cfg.write_text("- main\n- develop\n")
    with pytest.raises(ArgumentError, match="mapping"):
        load_config(config_path=str(cfg))


def test_env_overrides_file(tmp_path, monkeypatch):
    cfg = tmp_path / ".remark.yml"
    cfg.write_text("notes_ref: refs/notes/team\nfetch_notes: true\n")
    monkeypatch.setenv("REMARK_NOTES_REF", "refs/notes/mine")
    monkeypatch.setenv("REMARK_FETCH_NOTES", "off")
    config = load_config(config_path=str(cfg))
    assert config["notes_ref"] == "refs/notes/mine"
    assert config["fetch_notes"] is False


def test_cli_overrides_take_precedence(tmp_path, monkeypatch):
    monkeypatch.setenv("REMARK_BASE_REF", "develop")
    config = load_config(
        config_path=str(tmp_path / "nonexistent.yml"),
        cli_overrides={"base_ref": "main", "notes_ref": None},
    )
    assert config["base_ref"] == "main"
    assert config["notes_ref"] is None


class TestRepositorySettings:
    @pytest.fixture
    def repo(self, git_repo):
        return GitRepo.discover(git_repo)

    def test_diff_context_default(self, repo):
        assert diff_context(repo, DEFAULT_CONFIG) == 3

    def test_diff_context_from_git_config_is_clamped(self, repo, git, git_repo):
        git(git_repo, "config", "remark.diffContext", "99")
        assert diff_context(repo, DEFAULT_CONFIG) == 20

    def test_diff_context_config_wins(self, repo, git, git_repo):
        git(git_repo, "config", "remark.diffContext", "8")
        assert diff_context(repo, {**DEFAULT_CONFIG, "diff_context": 1}) == 1

    def test_layout_defaults_to_unified(self, repo):
        assert diff_layout(repo) == "unified"

    def test_layout_persists_in_git_config(self, repo, git, git_repo):
        set_diff_layout(repo, "side-by-side")
        assert git(git_repo, "config", "--local", "remark.diffView") == "side-by-side"
        assert diff_layout(repo) == "side-by-side"

    def test_toggle(self, repo):
        assert toggle_diff_layout(repo) == "side-by-side"
        assert toggle_diff_layout(repo) == "unified"

    def test_unknown_layout(self, repo):
        with pytest.raises(ArgumentError, match="unknown layout"):
            set_diff_layout(repo, "columns")
